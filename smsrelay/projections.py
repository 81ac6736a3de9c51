"""
Read views derived from the message store.

Nothing here keeps state; every call recomputes from the store's current
contents.
"""

import logging

from smsrelay.phone import normalize_phone
from smsrelay.schemas import Message
from smsrelay.storage import MessageStore

logger = logging.getLogger(__name__)


def list_contacts(store: MessageStore) -> list[str]:
    """
    Every party the system has exchanged messages with, sorted ascending.

    The contact of a message is its sender when inbound and its recipient
    when outbound, so the system's own number never shows up from its own
    traffic. Matching is exact after normalization.
    """
    contacts = set()
    for message in store.scan_all():
        contact = normalize_phone(message.contact)
        if contact:
            contacts.add(contact)
    result = sorted(contacts)
    logger.debug(f"Derived {len(result)} contacts")
    return result


def get_thread(store: MessageStore, phone) -> list[Message]:
    """All messages from or to phone, oldest first. Blank phone gives []."""
    party = normalize_phone(phone)
    if not party:
        return []
    return store.scan_by_party(party)


def recent_messages(store: MessageStore, limit: int) -> list[Message]:
    """The latest limit messages across all contacts, oldest first for display."""
    latest = store.scan_all(limit=limit)
    latest.reverse()
    return latest
