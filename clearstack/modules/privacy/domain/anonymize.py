"""Deterministic anonymization primitives used by the purge engine."""

import hashlib
import re
from uuid import UUID

from clearstack.shared.core.config import get_settings

REDACTED_FIRST_NAME = "Deleted"
REDACTED_LAST_NAME = "User"
REDACTION_TOKEN = "Content removed (GDPR)"

ANONYMOUS_EMAIL_PREFIX = "deleted-"
ANONYMOUS_EMAIL_PATTERN = re.compile(r"^deleted-[0-9a-f]{8,64}@[A-Za-z0-9.-]+$")


def anonymous_hash(user_id: UUID | str, length: int | None = None) -> str:
    """One-way, stable token derived from the user id."""
    length = length or get_settings().ERASURE_HASH_LENGTH
    return hashlib.sha256(str(user_id).encode("utf-8")).hexdigest()[:length]


def anonymous_email(user_id: UUID | str) -> str:
    """Placeholder address that keeps the unique email constraint satisfied."""
    settings = get_settings()
    return f"{ANONYMOUS_EMAIL_PREFIX}{anonymous_hash(user_id)}@{settings.ERASURE_EMAIL_DOMAIN}"


def is_anonymized_email(email: str | None) -> bool:
    return bool(email) and ANONYMOUS_EMAIL_PATTERN.match(email or "") is not None
