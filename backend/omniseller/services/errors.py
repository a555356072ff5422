"""Shared connector error types.

Every component raises one of these instead of logging and returning
``None``; the HTTP layer maps them to status codes in one place.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ConnectorError(Exception):
    """Base class for all marketplace connector failures.

    Attributes:
        code: stable machine-readable error code
        message: human-readable message
        details: optional diagnostic context (never raw tokens)
    """

    code = "connector_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class InvalidStateError(ConnectorError):
    """OAuth callback carried a missing or undecodable ``state`` (or no ``code``)."""

    code = "invalid_state"


class ConfigurationMissingError(ConnectorError):
    """No app key/secret on file for the seller and marketplace."""

    code = "configuration_missing"


class StoreNotFoundError(ConnectorError):
    code = "store_not_found"


class StoreNotConnectedError(ConnectorError):
    """Store row exists but is disconnected or has no access token."""

    code = "store_not_connected"


class ExternalApiError(ConnectorError):
    """Marketplace answered with a nonzero envelope ``code``."""

    code = "external_api_error"

    def __init__(
        self,
        message: str,
        *,
        api_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        merged.update({"api_code": api_code, "request_id": request_id})
        super().__init__(message, details=merged)
        self.api_code = api_code
        self.request_id = request_id


class TransportError(ConnectorError):
    """Network failure, timeout or a response that is not a valid envelope."""

    code = "transport_error"
