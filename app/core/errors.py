"""Typed failures raised by upstream clients and the cache core."""

from __future__ import annotations

from typing import Dict, Optional


class APIError(Exception):
    """Upstream HTTP call failed after all retries."""

    def __init__(self, message: str, status_code: Optional[int] = None, source: str = ""):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.source = source


class ConfigurationError(Exception):
    """A required upstream credential or setting is missing."""

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.message = message
        self.hint = hint


class EnrichmentError(Exception):
    """AI enrichment call failed; ``overloaded`` marks an upstream overload signal."""

    def __init__(self, message: str, overloaded: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.overloaded = overloaded
        self.status_code = status_code


def handle_api_error(error: BaseException) -> Dict[str, str]:
    """Build the ``{error, message}`` envelope returned by fee endpoints."""
    if isinstance(error, ConfigurationError):
        message = error.message
        if error.hint:
            message = f"{message}. {error.hint}"
        return {"error": "Configuration Error", "message": message}

    if isinstance(error, APIError):
        return {"error": "API Error", "message": error.message}

    if isinstance(error, Exception):
        return {"error": "Error", "message": str(error) or error.__class__.__name__}

    return {"error": "Unknown Error", "message": "An unexpected error occurred"}
