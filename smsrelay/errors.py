"""
Error taxonomy for the SMS relay.

Every error carries the HTTP status the API reports it with. The
exception handlers in main.py turn them into {"ok": false, "error": ...}.
"""

from fastapi import status


class RelayError(Exception):
    """Base class for all relay errors."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RelayError):
    """A send request is missing its destination or content."""
    status_code = status.HTTP_400_BAD_REQUEST


class ConfigurationError(RelayError):
    """Provider credentials or the sender number are not configured."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class StorageError(RelayError):
    """The backing medium of the message store failed."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransmissionError(RelayError):
    """The provider rejected the send or could not be reached."""
    status_code = status.HTTP_502_BAD_GATEWAY


class SignatureValidationError(RelayError):
    """The webhook signature did not match."""
    status_code = status.HTTP_403_FORBIDDEN
