import logging

from backend.app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging() -> None:
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
    # ldap3 is chatty at INFO
    logging.getLogger("ldap3").setLevel(logging.WARNING)
