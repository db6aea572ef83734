from __future__ import annotations

from typing import Optional


class WealthManagerError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(WealthManagerError):
    pass


class APIError(WealthManagerError):
    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or "INTERNAL_ERROR"


class ValidationError(APIError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, 400, "VALIDATION_ERROR")
        self.field = field


class NotFoundError(APIError):
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", 404, "NOT_FOUND")


class UpstreamError(APIError):
    """A yield, gas or price provider failed and no fallback applies."""

    def __init__(self, message: str):
        super().__init__(message, 502, "UPSTREAM_ERROR")
