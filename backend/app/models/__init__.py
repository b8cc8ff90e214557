from backend.app.models.account import Account
from backend.app.models.authentication_provider import AuthenticationProvider
from backend.app.models.communication_channel import CommunicationChannel
from backend.app.models.enums import (
    AuthType,
    ChannelState,
    IdentityState,
    LockoutState,
    ProviderState,
    UserState,
)
from backend.app.models.identity import Identity
from backend.app.models.login_audit_record import LoginAuditRecord
from backend.app.models.user import User
from backend.app.models.user_account_association import UserAccountAssociation

__all__ = [
    "Account",
    "AuthType",
    "AuthenticationProvider",
    "ChannelState",
    "CommunicationChannel",
    "Identity",
    "IdentityState",
    "LockoutState",
    "LoginAuditRecord",
    "ProviderState",
    "User",
    "UserAccountAssociation",
    "UserState",
]
