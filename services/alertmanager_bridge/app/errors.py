"""Error taxonomy shared by the ingress endpoints and the lifecycle engine."""

from __future__ import annotations

from fastapi import status


class BridgeError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DecodeError(BridgeError):
    """Malformed wire payload; rejected without any state change."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidPayload(DecodeError):
    """Action context failed validation."""


class NotFound(BridgeError):
    """Unknown configuration, fingerprint or chat message."""

    status_code = status.HTTP_404_NOT_FOUND


class NoMatchers(BridgeError):
    """A silence was requested for an alert without usable string labels."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ExternalServiceError(BridgeError):
    """The chat platform or Alertmanager could not be reached or failed."""

    status_code = status.HTTP_502_BAD_GATEWAY


__all__ = [
    "BridgeError",
    "DecodeError",
    "ExternalServiceError",
    "InvalidPayload",
    "NoMatchers",
    "NotFound",
]
