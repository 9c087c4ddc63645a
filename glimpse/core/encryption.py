"""
Match key derivation and AES-256-GCM envelopes.

Envelope layout (base64 encoded): IV (16 bytes) || auth tag (16 bytes) || ciphertext.
The same layout is used for chat messages keyed by a match key and for
personal fields encrypted at rest with the server master key.
"""
import base64
import binascii
import hashlib
import hmac
import os
from typing import Any, Iterable, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger

from glimpse.core.errors import DecryptionError

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
MATCH_KEY_SEPARATOR = ":"


def hmac_sha256_hex(data: str, key: str | bytes) -> str:
    if isinstance(key, str):
        key = key.encode("utf-8")
    return hmac.new(key, data.encode("utf-8"), hashlib.sha256).hexdigest()


def derive_match_key(user_id_a: str, user_id_b: str, server_secret: str) -> str:
    """Derive the symmetric key shared by a matched pair.

    The IDs are sorted before hashing so the result does not depend on the
    argument order. The key is never stored; it can be recomputed as long as
    the server secret is known.

    Returns:
        64 hex characters (HMAC-SHA-256 digest)
    """
    if user_id_a == user_id_b:
        raise ValueError("A match key needs two distinct users")
    if not server_secret:
        raise ValueError("Server secret must not be empty")
    combined = MATCH_KEY_SEPARATOR.join(sorted((user_id_a, user_id_b)))
    return hmac_sha256_hex(combined, server_secret)


def _key_from_match_key(match_key: str) -> bytes:
    # First 32 bytes of key material = first 64 hex characters
    try:
        key = bytes.fromhex(match_key[:KEY_LENGTH * 2])
    except (TypeError, ValueError) as e:
        raise ValueError("Match key must be a hex string") from e
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Match key must provide {KEY_LENGTH} bytes of key material")
    return key


def _seal(key: bytes, plaintext: str, aad: bytes | None) -> str:
    iv = os.urandom(IV_LENGTH)
    # AESGCM returns ciphertext || tag
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), aad)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def _decode_envelope(envelope: str) -> bytes:
    if not isinstance(envelope, str):
        raise DecryptionError("Envelope must be a base64 string")
    try:
        raw = base64.b64decode(envelope, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Malformed envelope") from e
    # Reject alternate encodings of the same bytes (unused padding bits)
    if base64.b64encode(raw).decode("ascii") != envelope:
        raise DecryptionError("Non-canonical envelope encoding")
    if len(raw) < IV_LENGTH + TAG_LENGTH:
        raise DecryptionError("Envelope too short")
    return raw


def _open(key: bytes, envelope: str, aad: bytes | None) -> str:
    raw = _decode_envelope(envelope)
    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[IV_LENGTH + TAG_LENGTH:]
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, aad)
    except InvalidTag as e:
        raise DecryptionError("Authentication tag mismatch") from e
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Plaintext is not valid UTF-8") from e


def encrypt_message(plaintext: str, match_key: str) -> str:
    """Encrypt a chat payload with a fresh IV."""
    return _seal(_key_from_match_key(match_key), plaintext, None)


def decrypt_message(envelope: str, match_key: str) -> str:
    """Decrypt a chat payload.

    Raises:
        DecryptionError: tampered, truncated or malformed envelope, or a key
            that cannot be used
    """
    try:
        key = _key_from_match_key(match_key)
    except ValueError as e:
        raise DecryptionError(str(e)) from e
    return _open(key, envelope, None)


class FieldEncryptor:
    """Envelope encryption of personal fields with the server master key."""

    def __init__(self, master_key: str | bytes):
        if isinstance(master_key, str):
            master_key = master_key.encode("utf-8")
        if len(master_key) != KEY_LENGTH:
            raise ValueError("Invalid encryption key: must be exactly 32 bytes")
        self._key = master_key

    @staticmethod
    def _aad(aad: str | None) -> bytes | None:
        return aad.encode("utf-8") if aad else None

    def encrypt(self, data: str, aad: str | None = None) -> str:
        return _seal(self._key, data, self._aad(aad))

    def decrypt(self, envelope: str, aad: str | None = None) -> str:
        return _open(self._key, envelope, self._aad(aad))

    def encrypt_fields(self, data: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """Return a copy of ``data`` with the named string fields encrypted."""
        result = dict(data)
        for field in fields:
            value = result.get(field)
            if value is None:
                continue
            result[field] = self.encrypt(str(value), aad=field)
        return result

    def decrypt_fields(self, data: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        result = dict(data)
        for field in fields:
            value = result.get(field)
            if value is None:
                continue
            try:
                result[field] = self.decrypt(value, aad=field)
            except DecryptionError:
                logger.error(f"Failed to decrypt field {field}")
                raise
        return result
