"""
Inbound side: provider webhook payloads into Message records.

The provider posts form fields From, To, Body, NumMedia and
MediaUrl0..MediaUrlN. Whatever happens to the record afterwards, the
webhook is always answered with a TwiML document.
"""

import logging
from typing import Mapping, Optional

from pydantic import ValidationError as PydanticValidationError
from twilio.twiml.messaging_response import MessagingResponse

from smsrelay.errors import StorageError
from smsrelay.metrics import record_inbound_outcome
from smsrelay.schemas import Direction, Message
from smsrelay.storage import MessageStore
from smsrelay.utils import new_message_id, utc_now_iso

logger = logging.getLogger(__name__)

# Provider limit on media attachments per message
MAX_MEDIA_ITEMS = 10


def extract_media_urls(params: Mapping[str, str]) -> list[str]:
    """
    Read NumMedia and then MediaUrl0.. up to that count.

    A missing or malformed count means no media. Declared entries that are
    absent or blank are skipped.
    """
    try:
        declared = int(str(params.get("NumMedia", "0")).strip() or 0)
    except ValueError:
        logger.warning(f"Ignoring malformed NumMedia: {params.get('NumMedia')!r}")
        return []

    urls = []
    for index in range(min(max(declared, 0), MAX_MEDIA_ITEMS)):
        url = params.get(f"MediaUrl{index}")
        if isinstance(url, str) and url.strip():
            urls.append(url.strip())
    return urls


def build_inbound_message(params: Mapping[str, str], id_prefix: str = "in") -> Optional[Message]:
    """
    Turn webhook form fields into an inbound Message.

    Returns None when the payload cannot form a valid record (no sender or
    recipient); the caller still acknowledges the webhook.
    """
    try:
        return Message(
            id=new_message_id(id_prefix),
            from_msisdn=params.get("From"),
            to=params.get("To"),
            body=params.get("Body") or "",
            direction=Direction.INBOUND,
            at=utc_now_iso(),
            media_urls=extract_media_urls(params),
        )
    except PydanticValidationError as e:
        logger.warning(f"Discarding inbound payload: {e.error_count()} invalid field(s)")
        logger.debug(f"Invalid inbound payload: {e}")
        return None


def persist_inbound(store: MessageStore, message: Message) -> bool:
    """
    Write an inbound message, logging instead of raising on storage failure.

    Runs after the webhook has been answered, so nothing is left to
    report a failure to.
    """
    try:
        store.put(message)
    except StorageError as e:
        logger.error(f"Inbound message {message.id} was not stored: {e}")
        record_inbound_outcome("storage_error")
        return False

    logger.info(f"Inbound message stored: {message.id}")
    record_inbound_outcome("stored")
    return True


def build_ack(reply_text: Optional[str] = None) -> str:
    """TwiML acknowledgment, optionally carrying one auto-reply message."""
    response = MessagingResponse()
    if reply_text:
        response.message(reply_text)
    return str(response)
