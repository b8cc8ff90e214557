class ServiceError(Exception):
    pass


class AccountNotFound(ServiceError):
    pass


class IdentityNotFound(ServiceError):
    pass


class TransportFailure(ServiceError):
    """Directory server could not be reached or answered with an error."""
