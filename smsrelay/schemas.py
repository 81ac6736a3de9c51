"""
Pydantic schemas for the message record and the API.

This module contains:
- The canonical Message record shared by the store, projections and adapters
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from smsrelay.phone import normalize_phone


# =============================================================================
# Message Record
# =============================================================================

class Direction(str, Enum):
    """Which way a message travelled relative to the system's own number."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Message(BaseModel):
    """
    A single SMS/MMS message, inbound or outbound.

    Validates on construction:
    - id: non-empty string, the idempotency key of the store
    - from/to: normalized, must be non-empty after normalization
    - at: ISO-8601 UTC string with Z suffix
    - body: may be empty (media-only MMS)

    Records are immutable; the store replaces them whole on a repeated id.
    """
    id: str = Field(..., min_length=1, description="Unique message identifier")
    # Note: 'from' is a reserved word in Python, so we use alias
    from_msisdn: str = Field(..., alias="from", description="Sender phone number")
    to: str = Field(..., description="Recipient phone number")
    body: str = Field(default="", description="Message text")
    direction: Direction = Field(..., description="inbound or outbound")
    at: str = Field(..., description="Time the system recorded the message (ISO-8601 UTC)")
    media_urls: list[str] = Field(
        default_factory=list,
        alias="mediaUrls",
        description="Media attached to an MMS, in provider order",
    )

    model_config = {
        "populate_by_name": True,  # Allow both 'from' and 'from_msisdn'
        "frozen": True,
    }

    @field_validator("from_msisdn", "to", mode="before")
    @classmethod
    def normalize_party(cls, v, info) -> str:
        """Normalize phone fields and reject ones that end up empty."""
        v = normalize_phone(v)
        if not v:
            raise ValueError(f"{info.field_name} must not be empty")
        return v

    @field_validator("body", mode="before")
    @classmethod
    def coerce_body(cls, v) -> str:
        return "" if v is None else str(v)

    @field_validator("at")
    @classmethod
    def validate_iso8601_utc(cls, v: str) -> str:
        """
        Validate ISO-8601 UTC timestamp with Z suffix.

        The value is rewritten to millisecond precision so that text order
        equals time order in both store backends.
        """
        if not v.endswith("Z"):
            raise ValueError("at must end with 'Z' (UTC timezone)")
        try:
            parsed = datetime.fromisoformat(v[:-1] + "+00:00")
        except ValueError:
            raise ValueError("at must be a valid ISO-8601 UTC timestamp")
        return parsed.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @property
    def contact(self) -> str:
        """The other party: the sender of inbound, the recipient of outbound."""
        if self.direction is Direction.INBOUND:
            return self.from_msisdn
        return self.to


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendRequest(BaseModel):
    """
    Body of POST /api/send.

    Fields are optional here so that missing values are reported as
    {"ok": false, "error": ...} by the send path instead of a 422.
    """
    to: Optional[str] = Field(None, description="Destination phone number")
    body: Optional[str] = Field(None, description="Message text")
    media_url: Optional[str] = Field(None, alias="mediaUrl", description="Optional media URL (MMS)")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [{"to": "+15550100", "body": "hello"}]
        }
    }

    @field_validator("to", "body", "media_url", mode="before")
    @classmethod
    def coerce_scalar(cls, v):
        """Accept numbers where text is expected, e.g. {"to": 15550100}."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    ok: bool = Field(default=False)
    error: str = Field(..., description="Human readable reason")


class SendResponse(BaseModel):
    """
    Response model for a successful send.

    recorded is False when the provider accepted the message but the local
    store failed to keep it; warning then explains what happened.
    """
    ok: bool = Field(default=True)
    sid: Optional[str] = Field(None, description="Provider message identifier")
    recorded: bool = Field(default=True, description="Whether the message was stored locally")
    warning: Optional[str] = Field(None, description="Set on degraded success")


class ContactsResponse(BaseModel):
    """Response model for GET /api/contacts."""
    contacts: list[str] = Field(default_factory=list)


class MessagesResponse(BaseModel):
    """Response model for GET /api/messages, always in ascending time order."""
    messages: list[Message] = Field(default_factory=list)


class DebugSeedResponse(BaseModel):
    """Response model for GET /debug/add."""
    ok: bool = Field(default=True)
    added: Message
    total: int = Field(..., ge=0, description="Records currently in the store")


class StorageInfo(BaseModel):
    mode: str = Field(..., description="memory or sqlite")
    location: str = Field(..., description="Where records are kept")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    ok: bool = Field(default=True)
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
    storage: Optional[StorageInfo] = Field(None, description="Active storage backend")
