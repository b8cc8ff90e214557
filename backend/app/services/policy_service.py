"""Who may manage a login identity.

Rules are ``(predicate, actions)`` pairs checked in order. Grants are additive:
an action is allowed as soon as any matching rule grants it. Predicates may
ask for other rights of the same subject, e.g. delete requires update.
"""
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.identity import Identity
from backend.app.services.account_service import get_account, is_passwordable

MANAGE_USER_LOGINS = "manage_user_logins"
MANAGE_SIS = "manage_sis"
READ_ROSTER = "read_roster"


@dataclass(frozen=True)
class Actor:
    user_id: int | None
    account_permissions: Mapping[int, frozenset[str]] = field(default_factory=dict)

    def has(self, account_id: int, permission: str) -> bool:
        return permission in self.account_permissions.get(account_id, frozenset())


@dataclass(frozen=True)
class PolicySubject:
    identity_user_id: int
    account_id: int
    sis_identifier: str | None
    is_new: bool
    passwordable: bool
    admins_can_change_passwords: bool
    owner_permissions: frozenset[str] = frozenset()


Predicate = Callable[[Actor, PolicySubject], bool]


def _admin_over_owner(actor: Actor, subject: PolicySubject) -> bool:
    account_id = subject.account_id
    if not actor.has(account_id, MANAGE_USER_LOGINS):
        return False
    actor_permissions = actor.account_permissions.get(account_id, frozenset())
    if not subject.owner_permissions <= actor_permissions:
        return False
    return actor.user_id == subject.identity_user_id or actor.has(account_id, READ_ROSTER)


RULES: list[tuple[Predicate, tuple[str, ...]]] = [
    (_admin_over_owner, ("create", "update")),
    (
        lambda actor, s: actor.user_id is not None
        and actor.user_id == s.identity_user_id
        and s.passwordable,
        ("change_password",),
    ),
    (
        lambda actor, s: s.is_new and s.passwordable and can(actor, "create", s),
        ("change_password",),
    ),
    (
        lambda actor, s: s.admins_can_change_passwords
        and s.passwordable
        and can(actor, "update", s),
        ("change_password",),
    ),
    (
        lambda actor, s: actor.has(s.account_id, MANAGE_SIS) and can(actor, "update", s),
        ("manage_sis",),
    ),
    (lambda actor, s: not s.sis_identifier and can(actor, "update", s), ("delete",)),
    (lambda actor, s: bool(s.sis_identifier) and can(actor, "manage_sis", s), ("delete",)),
]


def can(actor: Actor, action: str, subject: PolicySubject) -> bool:
    for predicate, actions in RULES:
        if action in actions and predicate(actor, subject):
            return True
    return False


def granted_rights(actor: Actor, subject: PolicySubject) -> set[str]:
    rights: set[str] = set()
    for predicate, actions in RULES:
        if rights.issuperset(actions):
            continue
        if predicate(actor, subject):
            rights.update(actions)
    return rights


async def build_subject(
    session: AsyncSession,
    identity: Identity,
    *,
    owner_permissions: frozenset[str] = frozenset(),
) -> PolicySubject:
    account = await get_account(session, identity.account_id)
    return PolicySubject(
        identity_user_id=identity.user_id,
        account_id=identity.account_id,
        sis_identifier=identity.sis_identifier,
        is_new=identity.id is None,
        passwordable=await is_passwordable(session, identity),
        admins_can_change_passwords=account.admins_can_change_passwords,
        owner_permissions=owner_permissions,
    )
