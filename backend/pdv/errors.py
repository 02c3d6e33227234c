"""
Service error base.

Every service module raises subclasses of ServiceError so routes can turn
them into structured JSON without knowing each failure individually.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Business failure with a client-facing message and HTTP status."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload
