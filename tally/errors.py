"""
tally.errors — Economy Error Taxonomy
======================================

Every declined operation raises a subclass of :class:`EconomyError` carrying a
caller-facing ``message`` and a stable ``code``.  "Already done" outcomes are
not errors — they come back as ``granted=False`` / ``awarded=False`` results.
"""

from __future__ import annotations

from typing import Any

GENERIC_STORE_MESSAGE = "Server error"


class EconomyError(Exception):
    """Base economy error with a consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(EconomyError):
    def __init__(self, message: str = "User not found"):
        super().__init__(message, code="NOT_FOUND")


class InvalidInputError(EconomyError):
    def __init__(self, message: str = "Invalid request", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_INPUT", details=details)


class PolicyDeniedError(EconomyError):
    def __init__(self, message: str, code: str = "POLICY_DENIED"):
        super().__init__(message, code=code)


class RateLimitedError(PolicyDeniedError):
    def __init__(self, message: str):
        super().__init__(message, code="RATE_LIMITED")


class StoreFailureError(EconomyError):
    """The store itself failed.  The message never leaks driver details;
    the original exception is chained as ``__cause__``."""

    def __init__(self) -> None:
        super().__init__(GENERIC_STORE_MESSAGE, code="STORE_FAILURE")
