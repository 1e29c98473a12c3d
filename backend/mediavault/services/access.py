"""Shared-secret check for privileged operations."""
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

ADMIN_KEY_HEADER = "x-admin-key"


def authorize(supplied: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time comparison of the caller's key against the configured secret.

    An unset secret denies everyone rather than letting an empty header through.
    """
    if not secret:
        return False
    candidate = (supplied or "").encode("utf-8")
    granted = hmac.compare_digest(candidate, secret.encode("utf-8"))
    if not granted:
        logger.warning("Denied privileged request (%s)", "no key" if not supplied else "bad key")
    return granted
