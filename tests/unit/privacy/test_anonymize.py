import re
from uuid import UUID

from clearstack.modules.privacy.domain.anonymize import (
    anonymous_email,
    anonymous_hash,
    is_anonymized_email,
)

USER_ID = UUID("8d0c5f9e-3c43-4c4f-9a52-5c2b1f0d7e11")


def test_hash_is_stable_and_truncated():
    assert anonymous_hash(USER_ID) == anonymous_hash(str(USER_ID))
    assert re.fullmatch(r"[0-9a-f]{16}", anonymous_hash(USER_ID))
    assert len(anonymous_hash(USER_ID, length=32)) == 32


def test_anonymous_email_uses_configured_domain(override_settings):
    assert anonymous_email(USER_ID) == f"deleted-{anonymous_hash(USER_ID)}@erased.invalid"

    override_settings(ERASURE_EMAIL_DOMAIN="example.invalid")
    assert anonymous_email(USER_ID).endswith("@example.invalid")


def test_is_anonymized_email():
    assert is_anonymized_email(anonymous_email(USER_ID))
    assert not is_anonymized_email("alice@acme.test")
    assert not is_anonymized_email(None)
    assert not is_anonymized_email("")
