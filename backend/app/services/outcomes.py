"""Results returned by identity writes and credential resolution.

Callers branch on the type. ``ImpossibleCredentials`` and ``TooManyAttempts``
are terminal and should invalidate any existing session; ``NoMatch`` (and its
``AmbiguousUser`` refinement) is an ordinary failed login.
"""
from dataclasses import dataclass, field

from backend.app.models.identity import Identity


@dataclass(frozen=True)
class FieldError:
    field: str
    kind: str
    message: str = ""


@dataclass
class ValidationFailure:
    errors: list[FieldError] = field(default_factory=list)

    def on(self, field_name: str) -> list[FieldError]:
        return [error for error in self.errors if error.field == field_name]

    def kinds(self, field_name: str) -> set[str]:
        return {error.kind for error in self.on(field_name)}


@dataclass
class ResolvedIdentity:
    identity: Identity


@dataclass
class NoMatch:
    pass


@dataclass
class AmbiguousUser(NoMatch):
    user_ids: list[int] = field(default_factory=list)


@dataclass
class TooManyAttempts:
    pass


@dataclass
class ImpossibleCredentials:
    reason: str = ""


AuthenticationOutcome = (
    ResolvedIdentity | AmbiguousUser | NoMatch | TooManyAttempts | ImpossibleCredentials
)
