# backend/clinic_booking/services/checkin_token_codec.py
"""
Check-in token codec.

A check-in token is a self-contained credential tying a booking to its
subject for a bounded window. It is presented at the front desk (usually as
a QR code) and verified without a live reservation lookup.

Wire format::

    ct<version>.<urlsafe-b64(nonce || AES-GCM(json payload))>

The JSON payload carries ``v, bid, sid, iat, exp, sig`` where ``sig`` is an
HMAC-SHA256 over the canonical form of the other fields. The version tag is
bound into the AES-GCM associated data, so a payload cannot be replayed
under a different decoder.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import json
import logging
import re
from typing import Any, Callable, Dict, Optional

from ..core.config import Settings, settings
from ..core.crypto import (
    SealError,
    b64u_decode,
    b64u_encode,
    constant_time_equals,
    hmac_sha256_hex,
    open_sealed,
    seal,
    validate_aes_key,
)
from ..core.exceptions import ServiceException, TokenInvalidException
from ..core.timezone_utils import Clock, ensure_utc, utc_now
from ..models.booking import Booking

logger = logging.getLogger(__name__)

CURRENT_TOKEN_VERSION = 1
_TOKEN_RE = re.compile(r"^ct(?P<version>\d{1,3})\.(?P<body>[A-Za-z0-9_-]+)$")


@dataclass(frozen=True)
class CheckinTokenPayload:
    """Decoded, not yet verified, token contents. Times are epoch seconds."""

    version: int
    booking_id: str
    subject_id: str
    issued_at: int
    expires_at: int
    signature: str

    @property
    def issued_at_dt(self) -> datetime:
        return datetime.fromtimestamp(self.issued_at, tz=timezone.utc)

    @property
    def expires_at_dt(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)


def _canonical_v1(booking_id: str, subject_id: str, issued_at: int, expires_at: int) -> bytes:
    return f"v1|{booking_id}|{subject_id}|{issued_at}|{expires_at}".encode("utf-8")


def _decode_v1(raw: Dict[str, Any]) -> CheckinTokenPayload:
    try:
        payload = CheckinTokenPayload(
            version=1,
            booking_id=str(raw["bid"]),
            subject_id=str(raw["sid"]),
            issued_at=int(raw["iat"]),
            expires_at=int(raw["exp"]),
            signature=str(raw["sig"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalidException("malformed") from exc
    if not payload.booking_id or not payload.subject_id or not payload.signature:
        raise TokenInvalidException("malformed")
    return payload


# Version registry: add a canonicalizer/decoder pair per new token version.
_CANONICALIZERS: Dict[int, Callable[[str, str, int, int], bytes]] = {1: _canonical_v1}
_DECODERS: Dict[int, Callable[[Dict[str, Any]], CheckinTokenPayload]] = {1: _decode_v1}


def _associated_data(version: int) -> bytes:
    return f"clinic-checkin:v{version}".encode("utf-8")


class CheckinTokenCodec:
    """
    Issues, parses and verifies check-in tokens.

    ``parse`` fails closed with TokenInvalidException; ``verify`` returns a
    bool. Neither ever logs token text.
    """

    def __init__(
        self,
        signing_key: bytes,
        encryption_key: bytes,
        validity: timedelta = timedelta(hours=24),
        clock_skew: timedelta = timedelta(seconds=120),
        now_fn: Optional[Clock] = None,
    ):
        if not signing_key:
            raise ValueError("signing_key must not be empty")
        if len(encryption_key) != 32:
            raise ValueError("encryption_key must be 32 bytes")
        self._signing_key = signing_key
        self._encryption_key = encryption_key
        self.validity = validity
        self.clock_skew = clock_skew
        self.now_fn: Clock = now_fn or utc_now

    @classmethod
    def from_settings(
        cls, config: Settings = settings, now_fn: Optional[Clock] = None
    ) -> "CheckinTokenCodec":
        signing = config.checkin_token_signing_key
        signing_value = signing.get_secret_value() if signing is not None else ""
        if not signing_value or not config.checkin_token_encryption_key:
            raise ServiceException(
                "Check-in token keys are not configured",
                code="TOKEN_KEYS_MISSING",
            )
        return cls(
            signing_key=signing_value.encode("utf-8"),
            encryption_key=validate_aes_key(
                config.checkin_token_encryption_key, "CHECKIN_TOKEN_ENCRYPTION_KEY"
            ),
            validity=timedelta(hours=config.checkin_token_validity_hours),
            clock_skew=timedelta(seconds=config.checkin_token_clock_skew_seconds),
            now_fn=now_fn,
        )

    def _sign(self, version: int, booking_id: str, subject_id: str, iat: int, exp: int) -> str:
        canonical = _CANONICALIZERS[version](booking_id, subject_id, iat, exp)
        return hmac_sha256_hex(self._signing_key, canonical)

    def issue(self, booking: Booking) -> str:
        """Build, sign and seal a token for ``booking``."""
        issued_at = int(ensure_utc(self.now_fn()).timestamp())
        expires_at = issued_at + int(self.validity.total_seconds())
        booking_id = str(booking.id)
        subject_id = str(booking.subject_id)
        body = {
            "v": CURRENT_TOKEN_VERSION,
            "bid": booking_id,
            "sid": subject_id,
            "iat": issued_at,
            "exp": expires_at,
            "sig": self._sign(CURRENT_TOKEN_VERSION, booking_id, subject_id, issued_at, expires_at),
        }
        plaintext = json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")
        sealed = seal(self._encryption_key, plaintext, _associated_data(CURRENT_TOKEN_VERSION))
        return f"ct{CURRENT_TOKEN_VERSION}.{b64u_encode(sealed)}"

    def parse(self, token: str) -> CheckinTokenPayload:
        """
        Decode a presented token.

        Raises:
            TokenInvalidException: reason ``malformed``, ``unsupported_version``
                or ``decrypt_failed``
        """
        match = _TOKEN_RE.match((token or "").strip())
        if not match:
            raise TokenInvalidException("malformed")

        version = int(match.group("version"))
        decoder = _DECODERS.get(version)
        if decoder is None:
            raise TokenInvalidException("unsupported_version")

        try:
            sealed = b64u_decode(match.group("body"))
        except ValueError as exc:
            raise TokenInvalidException("malformed") from exc

        try:
            plaintext = open_sealed(self._encryption_key, sealed, _associated_data(version))
        except SealError as exc:
            raise TokenInvalidException("decrypt_failed") from exc

        try:
            raw = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise TokenInvalidException("malformed") from exc
        if not isinstance(raw, dict) or raw.get("v") != version:
            raise TokenInvalidException("malformed")

        return decoder(raw)

    def check(self, payload: CheckinTokenPayload, booking: Booking) -> Optional[str]:
        """Return why ``payload`` does not authenticate ``booking``, or None if it does."""
        if payload.version not in _CANONICALIZERS:
            return "unsupported_version"

        expected = self._sign(
            payload.version,
            str(booking.id),
            str(booking.subject_id),
            payload.issued_at,
            payload.expires_at,
        )
        signature_ok = constant_time_equals(expected, payload.signature)
        fields_ok = payload.booking_id == booking.id and payload.subject_id == booking.subject_id
        if not (signature_ok and fields_ok):
            return "signature_mismatch"

        now = ensure_utc(self.now_fn())
        if now < payload.issued_at_dt - self.clock_skew:
            return "not_yet_valid"
        if now > payload.expires_at_dt:
            return "expired"
        return None

    def verify(self, payload: CheckinTokenPayload, booking: Booking) -> bool:
        return self.check(payload, booking) is None
