"""
Relay Exceptions
"""

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base exception for relay errors."""
    pass


class ConfigError(RelayError):
    """Required configuration is missing."""
    pass


class ValidationError(RelayError):
    """Request body is missing or has invalid fields."""
    pass


class NotFoundError(RelayError):
    """Referenced row does not exist."""
    pass


class RelayFailure(RelayError):
    """The downstream webhook did not accept the payload."""

    def __init__(self, message: str, status_code: int = 0, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


class StoreError(RelayError):
    """Database or storage operation failed."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


def require_fields(data: Optional[Dict[str, Any]], *fields: str) -> Dict[str, Any]:
    """Raise ValidationError unless every field is present and non-empty."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [f for f in fields if data.get(f) in (None, '', [])]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return data
