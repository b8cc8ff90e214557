from enum import Enum


class IdentityState(str, Enum):
    active = "active"
    deleted = "deleted"


class UserState(str, Enum):
    creation_pending = "creation_pending"
    pre_registered = "pre_registered"
    registered = "registered"
    deleted = "deleted"


class ProviderState(str, Enum):
    active = "active"
    deleted = "deleted"


class AuthType(str, Enum):
    canvas = "canvas"
    ldap = "ldap"
    cas = "cas"
    saml = "saml"
    openid_connect = "openid_connect"


class ChannelState(str, Enum):
    unconfirmed = "unconfirmed"
    active = "active"
    retired = "retired"


class LockoutState(str, Enum):
    normal = "normal"
    warning = "warning"
    locked = "locked"
