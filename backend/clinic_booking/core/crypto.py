"""Lightweight helpers for sealing and signing short credentials."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_LEN = 12


class SealError(ValueError):
    """Raised when sealed material cannot be opened."""


def validate_aes_key(key: str | None, name: str = "encryption key") -> bytes:
    """Decode a urlsafe base64 AES-256 key, raising ValueError when unusable."""

    if not key:
        raise ValueError(f"{name} must be configured.")

    try:
        decoded = b64u_decode(key)
    except Exception as exc:  # pragma: no cover - configuration error surfaced at startup
        raise ValueError(f"{name} is invalid (not urlsafe base64).") from exc

    if len(decoded) != 32:
        raise ValueError(f"{name} must decode to 32 bytes.")
    return decoded


def b64u_encode(data: bytes) -> str:
    """Encode bytes to urlsafe base64 without padding."""

    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def b64u_decode(payload: str) -> bytes:
    """Decode urlsafe base64 string, tolerating missing padding."""

    padding_len = (-len(payload)) % 4
    padded = payload + ("=" * padding_len)
    return base64.urlsafe_b64decode(padded.encode("utf-8"))


def hmac_sha256_hex(key: bytes, message: bytes) -> str:
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def constant_time_equals(expected: str, provided: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def seal(key: bytes, plaintext: bytes, associated_data: bytes | None = None) -> bytes:
    """Encrypt with AES-GCM; returns nonce || ciphertext."""

    nonce = os.urandom(_NONCE_LEN)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data)
    return nonce + ciphertext


def open_sealed(key: bytes, payload: bytes, associated_data: bytes | None = None) -> bytes:
    """Decrypt nonce || ciphertext produced by :func:`seal`."""

    if len(payload) <= _NONCE_LEN:
        raise SealError("Malformed sealed payload")

    nonce = payload[:_NONCE_LEN]
    ciphertext = payload[_NONCE_LEN:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag as exc:
        raise SealError("Unable to open sealed payload") from exc


__all__ = [
    "SealError",
    "b64u_decode",
    "b64u_encode",
    "constant_time_equals",
    "hmac_sha256_hex",
    "open_sealed",
    "seal",
    "validate_aes_key",
]
