"""
Secure credential handling utility.
Signing and verifying payment callbacks, and keeping secrets out of the logs.
"""

import hashlib
import hmac
import re
from typing import Optional

from loguru import logger

from glimpse.core.config import Settings


def sign_payload(payload: bytes, secret: str) -> str:
    """HMAC-SHA256 hex signature of a raw request body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Check a callback signature in constant time.

    Args:
        payload: Raw request body
        signature: Hex signature sent by the caller (an optional "sha256=" prefix is accepted)
        secret: Shared secret

    Returns:
        True if the signature matches
    """
    if not signature or not secret:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(sign_payload(payload, secret), signature.strip().lower())


# Settings that must never reach the logs, not even partially
SECRET_SETTINGS = ("MATCH_KEY_SECRET", "ENCRYPTION_KEY", "PAYMENT_WEBHOOK_SECRET")

_DB_PASSWORD = re.compile(r"^(?P<scheme>[\w+]+://)(?P<user>[^:/@]+):(?P<password>[^@]+)@")


def mask_sensitive_data(url: str) -> str:
    """Hide the password of a database URL: 'postgresql://app:***@db/glimpse'."""
    return _DB_PASSWORD.sub(r"\g<scheme>\g<user>:***@", url)


def describe_settings(settings: Settings) -> dict[str, str]:
    """Settings as loggable strings. Secrets only say whether they are set."""
    described = {}
    for name, value in sorted(settings.model_dump(by_alias=True).items()):
        if name in SECRET_SETTINGS:
            described[name] = "<set>" if value else "<unset>"
        elif name == "DATABASE_URL":
            described[name] = mask_sensitive_data(value)
        else:
            described[name] = str(value)
    return described


def log_settings(settings: Settings) -> None:
    logger.info("=== Effective settings ===")
    for name, value in describe_settings(settings).items():
        logger.info(f"{name}: {value}")
