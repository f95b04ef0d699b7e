"""Error taxonomy shared by the MFA, OTP and auth blueprints.

Each error carries the HTTP status it maps to and a message that is safe to
show to a caller. Internal detail goes to the log, never into ``message``.
"""
from __future__ import annotations

from typing import Any, List, Optional


class AuthError(Exception):
    status = 500
    message = "An error occurred. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class Unauthenticated(AuthError):
    status = 401
    message = "Unauthorized"


class NotConfigured(AuthError):
    status = 400
    message = "MFA not set up"


class InvalidCode(AuthError):
    status = 400
    message = "Invalid or expired verification code"


class DecryptionError(AuthError):
    status = 500


class DeliveryError(AuthError):
    status = 500
    message = "Failed to send verification code. Please try again."


class ValidationError(AuthError):
    status = 400
    message = "Invalid input"

    def __init__(self, details: Optional[List[Any]] = None, message: Optional[str] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class MfaRequired(AuthError):
    status = 403
    message = "MFA token required for this operation"


class AlreadyEnabled(AuthError):
    status = 409
    message = "MFA is already enabled"


class IdentityError(AuthError):
    status = 400
    message = "Unable to complete the request"


class ServiceUnavailable(AuthError):
    status = 503
    message = "Service temporarily unavailable. Please try again later."


class RateLimited(ServiceUnavailable):
    status = 429


class ConfigError(RuntimeError):
    """Raised at startup when required configuration is missing."""
