"""
Utility functions for the SMS relay.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Mapping, Optional

from starlette.requests import Request
from twilio.request_validator import RequestValidator

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_message_id(prefix: str) -> str:
    """Generate a message id of the form <prefix>_<epoch-ms>_<random hex>."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def canonical_webhook_url(request: Request, public_base_url: str = "") -> str:
    """
    URL the provider signed the webhook against.

    Behind a proxy the request URL seen here differs from the public one,
    so PUBLIC_BASE_URL replaces scheme and host when configured.
    """
    if not public_base_url:
        return str(request.url)
    url = public_base_url.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


def verify_twilio_signature(
    secret: str,
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
) -> bool:
    """
    Verify the X-Twilio-Signature header of a webhook request.

    Args:
        secret: Auth token shared with the provider
        url: Canonical URL the request was sent to
        params: Form fields of the request
        signature: Value of the X-Twilio-Signature header

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature:
        logger.warning("Missing webhook signature header")
        return False

    logger.debug(f"Verifying webhook signature for {url}")
    is_valid = RequestValidator(secret).validate(url, dict(params), signature)
    logger.info(f"Webhook signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
