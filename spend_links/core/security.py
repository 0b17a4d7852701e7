from __future__ import annotations

import re
import secrets
from functools import lru_cache

from passlib.context import CryptContext

from .errors import ValidationError

# No 0/O or 1/I so codes survive being read out loud.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8

_PIN_PATTERN = re.compile(r"[0-9]{4}")
_CODE_PATTERN = re.compile(rf"[{CODE_ALPHABET}]{{{CODE_LENGTH}}}")


@lru_cache
def get_crypt_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def generate_link_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_link_code(code: str) -> str:
    """Upper-case a user-supplied code and reject anything malformed."""
    normalized = (code or "").strip().upper()
    if not _CODE_PATTERN.fullmatch(normalized):
        raise ValidationError("Malformed link code")
    return normalized


def validate_secret(secret: str, label: str = "Passcode") -> str:
    if not isinstance(secret, str) or not _PIN_PATTERN.fullmatch(secret):
        raise ValidationError(f"{label} must be exactly 4 digits")
    return secret


def hash_secret(secret: str, rounds: int) -> str:
    return get_crypt_context(rounds).hash(secret)


def verify_secret(secret: str, encoded: str | None) -> bool:
    if not encoded:
        return False
    try:
        return get_crypt_context().verify(str(secret), encoded)
    except ValueError:
        # Not a hash this context recognises.
        return False


def burn_verification(rounds: int) -> None:
    """Spend the same work as a real verification so a missing record
    cannot be told apart from a wrong secret by timing."""
    get_crypt_context(rounds).dummy_verify()
