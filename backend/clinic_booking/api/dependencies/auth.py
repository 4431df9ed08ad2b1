# backend/clinic_booking/api/dependencies/auth.py
"""
Caller identity dependencies.

Identity is established upstream by the host platform; this service only
reads the opaque subject id it forwards. Staff endpoints are additionally
gated by the shared admin key when one is configured.
"""

import logging
from typing import Optional

from fastapi import Header

from ...core.config import settings
from ...core.crypto import constant_time_equals
from ...core.exceptions import UnauthorizedException

logger = logging.getLogger(__name__)

SUBJECT_HEADER = "X-Subject-Id"
ADMIN_KEY_HEADER = "X-Admin-Key"
STAFF_HEADER = "X-Staff-Id"


def get_subject_id(
    x_subject_id: Optional[str] = Header(None, alias=SUBJECT_HEADER),
) -> str:
    """Opaque subject id supplied by the identity provider."""
    subject_id = (x_subject_id or "").strip()
    if not subject_id:
        raise UnauthorizedException(
            "Caller identity is required", code="SUBJECT_REQUIRED"
        )
    return subject_id


def require_staff(
    x_admin_key: Optional[str] = Header(None, alias=ADMIN_KEY_HEADER),
    x_staff_id: Optional[str] = Header(None, alias=STAFF_HEADER),
) -> str:
    """
    Gate a staff endpoint.

    Returns:
        The acting staff identifier ("staff" when none is sent)
    """
    configured = settings.admin_api_key.get_secret_value() if settings.admin_api_key else ""
    if not configured and settings.environment == "production":
        logger.error("Staff request refused: ADMIN_API_KEY is not configured")
        raise UnauthorizedException("Staff access is not configured", code="ADMIN_KEY_REQUIRED")
    if configured and not constant_time_equals(configured, x_admin_key or ""):
        logger.warning("Rejected staff request with missing or wrong admin key")
        raise UnauthorizedException("Invalid admin key", code="ADMIN_KEY_INVALID")
    return (x_staff_id or "").strip() or "staff"
