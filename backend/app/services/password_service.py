"""Password hashing across a rotating chain of schemes.

New hashes are always produced by the current scheme. Legacy schemes stay in
the context only so existing hashes keep verifying; when one matches, the
caller receives a replacement hash from the current scheme and stores it when
convenient. To rotate, add the new scheme to the legacy list for a full deploy
first, then promote it, so old processes never meet a hash they cannot read.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass

from passlib.context import CryptContext

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

SSHA_PREFIX = "{SSHA}"
SHA1_HEX_LENGTH = 40


@dataclass(frozen=True)
class VerifyResult:
    valid: bool
    replacement_hash: str | None = None


class CryptoProviderChain:
    def __init__(self, current: str, legacy: list[str] | tuple[str, ...] = (), **scheme_options):
        if current in legacy:
            raise ValueError(f"{current} cannot be both current and legacy")
        self.current = current
        self.legacy = list(legacy)
        if self.legacy:
            scheme_options["deprecated"] = self.legacy
        self._context = CryptContext(
            schemes=[current, *self.legacy],
            default=current,
            **scheme_options,
        )

    def hash(self, secret: str) -> str:
        return self._context.hash(secret)

    def scheme_of(self, hashed_secret: str) -> str | None:
        return self._context.identify(hashed_secret)

    def verify(self, secret: str, hashed_secret: str | None) -> VerifyResult:
        if not secret or not hashed_secret:
            return VerifyResult(False)
        try:
            valid, new_hash = self._context.verify_and_update(secret, hashed_secret)
        except ValueError:
            # Unknown or malformed hash format.
            logger.warning("Unrecognised password hash format, treating as mismatch")
            return VerifyResult(False)
        return VerifyResult(valid, new_hash if valid else None)


def build_chain() -> CryptoProviderChain:
    options = {}
    if settings.password_current_scheme == "scrypt":
        options["scrypt__rounds"] = settings.password_scrypt_rounds
    return CryptoProviderChain(
        settings.password_current_scheme,
        settings.password_legacy_schemes,
        **options,
    )


_chain: CryptoProviderChain | None = None


def get_chain() -> CryptoProviderChain:
    global _chain
    if _chain is None:
        _chain = build_chain()
    return _chain


def hash_password(plain: str) -> str:
    return get_chain().hash(plain)


def verify_password(plain: str, password_hash: str | None) -> VerifyResult:
    return get_chain().verify(plain, password_hash)


def generate_temporary_password() -> str:
    return secrets.token_urlsafe(15)


def make_sis_hash(plain: str, salt: str) -> str:
    """Build an SIS-imported hash: ``{SSHA}`` + base64(hex sha1 digest + salt)."""
    digest = hashlib.sha1((plain + salt).encode()).hexdigest()
    return SSHA_PREFIX + base64.b64encode((digest + salt).encode()).decode()


def verify_sis_hash(plain: str, sis_hash: str | None) -> bool:
    if not plain or not sis_hash:
        return False
    encoded = sis_hash[len(SSHA_PREFIX):] if sis_hash.startswith(SSHA_PREFIX) else sis_hash
    try:
        decoded = base64.b64decode(encoded).decode()
    except (binascii.Error, UnicodeDecodeError):
        return False
    digest, salt = decoded[:SHA1_HEX_LENGTH], decoded[SHA1_HEX_LENGTH:]
    if len(digest) != SHA1_HEX_LENGTH or not salt:
        return False
    candidate = hashlib.sha1((plain + salt).encode()).hexdigest()
    return hmac.compare_digest(candidate, digest)
