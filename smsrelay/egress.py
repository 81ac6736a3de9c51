"""
Outbound side: UI send requests into provider sends and Message records.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from starlette.concurrency import run_in_threadpool
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from smsrelay.config import Settings
from smsrelay.errors import ConfigurationError, StorageError, TransmissionError, ValidationError
from smsrelay.metrics import record_outbound_outcome
from smsrelay.phone import normalize_phone
from smsrelay.schemas import Direction, Message
from smsrelay.storage import MessageStore
from smsrelay.utils import new_message_id, utc_now_iso

logger = logging.getLogger(__name__)


class TwilioSender:
    """Sends messages through the Twilio REST API."""

    def __init__(self, account_sid: str, auth_token: str):
        self.client = Client(account_sid, auth_token)

    def send(self, from_: str, to: str, body: str, media_urls: Sequence[str]) -> Optional[str]:
        """Send one message and return the provider's message SID."""
        kwargs = {"from_": from_, "to": to}
        if body:
            kwargs["body"] = body
        if media_urls:
            kwargs["media_url"] = list(media_urls)
        sent = self.client.messages.create(**kwargs)
        return sent.sid


@dataclass
class SendResult:
    sid: Optional[str]
    message: Message
    recorded: bool = True
    warning: Optional[str] = None


async def send_outbound(
    store: MessageStore,
    settings: Settings,
    to,
    body,
    media_url: Optional[str] = None,
    sender=None,
) -> SendResult:
    """
    Send a message to `to` and record it as outbound.

    Args:
        store: Message store receiving the outbound record
        settings: Provides the Twilio credentials and the sender number
        to: Destination phone number
        body: Message text, may be empty when media_url is given
        media_url: Optional media attachment
        sender: Object with a send(from_, to, body, media_urls) method;
            a TwilioSender built from settings when None

    Returns:
        SendResult; recorded is False when the send went out but the
        local write failed.

    Raises:
        ValidationError: destination or content missing
        ConfigurationError: Twilio credentials not configured
        TransmissionError: the provider rejected the send or was unreachable
    """
    destination = normalize_phone(to)
    text = "" if body is None else str(body)
    media_urls = [media_url.strip()] if isinstance(media_url, str) and media_url.strip() else []

    if not destination:
        record_outbound_outcome("validation_error")
        raise ValidationError("Missing 'to'")
    if not text and not media_urls:
        record_outbound_outcome("validation_error")
        raise ValidationError("Missing 'body'")

    if not settings.twilio_configured:
        record_outbound_outcome("configuration_error")
        raise ConfigurationError(
            "Missing env vars. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER"
        )
    if sender is None:
        sender = TwilioSender(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    from_number = normalize_phone(settings.TWILIO_PHONE_NUMBER)

    logger.info(f"Sending outbound message ({len(media_urls)} media)")
    logger.debug(f"Outbound message: from={from_number}, to={destination}")

    # The SDK blocks on HTTP, so it runs in the threadpool
    try:
        sid = await run_in_threadpool(sender.send, from_number, destination, text, media_urls)
    except (TwilioException, OSError) as e:
        reason = getattr(e, "msg", None) or str(e) or "Send failed"
        logger.error(f"Outbound send failed: {reason}")
        record_outbound_outcome("transmission_error")
        raise TransmissionError(reason) from e

    message = Message(
        id=sid or new_message_id("out"),
        from_msisdn=from_number,
        to=destination,
        body=text,
        direction=Direction.OUTBOUND,
        at=utc_now_iso(),
        media_urls=media_urls,
    )

    try:
        store.put(message)
    except StorageError as e:
        logger.error(f"Outbound message {message.id} was sent but not stored: {e}")
        record_outbound_outcome("storage_error")
        return SendResult(
            sid=sid,
            message=message,
            recorded=False,
            warning="Message was sent but could not be saved; it will be missing from the thread",
        )

    logger.info(f"Outbound message sent and stored: {message.id}")
    record_outbound_outcome("sent")
    return SendResult(sid=sid, message=message)
