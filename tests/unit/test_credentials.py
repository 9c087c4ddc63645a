from glimpse.core.credentials import (
    describe_settings,
    mask_sensitive_data,
    sign_payload,
    verify_signature,
)
from tests.fixtures.services import TEST_ENCRYPTION_KEY, TEST_WEBHOOK_SECRET


def test_database_password_is_masked():
    assert mask_sensitive_data("postgresql+asyncpg://app:hunter2@db:5432/glimpse") == (
        "postgresql+asyncpg://app:***@db:5432/glimpse"
    )
    assert mask_sensitive_data("sqlite+aiosqlite:///./glimpse.db") == "sqlite+aiosqlite:///./glimpse.db"


def test_described_settings_never_contain_secrets(test_settings):
    described = describe_settings(test_settings)

    assert described["ENCRYPTION_KEY"] == "<set>"
    assert described["PAYMENT_WEBHOOK_SECRET"] == "<set>"
    assert described["MATCH_KEY_SECRET"] == "<set>"
    assert described["LIKE_COOLDOWN_DAYS"] == "14"

    rendered = " ".join(described.values())
    for secret in (TEST_ENCRYPTION_KEY, TEST_WEBHOOK_SECRET, test_settings.MATCH_KEY_SECRET):
        assert secret not in rendered
        assert secret[:3] + "..." not in rendered


def test_signature_accepts_prefixed_header():
    body = b'{"paymentId": "p-1"}'
    signature = sign_payload(body, TEST_WEBHOOK_SECRET)

    assert verify_signature(body, signature, TEST_WEBHOOK_SECRET)
    assert verify_signature(body, f"sha256={signature}", TEST_WEBHOOK_SECRET)
    assert not verify_signature(body + b" ", signature, TEST_WEBHOOK_SECRET)
    assert not verify_signature(body, None, TEST_WEBHOOK_SECRET)
