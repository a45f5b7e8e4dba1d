"""
auth/errors.py -- Caller-visible session errors.

Every error here is recoverable by the caller and carries the machine-readable
code and HTTP status the API layer uses to build the ErrorResponse envelope.
None of them is fatal to the process.

InvalidCredentials deliberately covers both "no such user" and "wrong
password" so responses cannot be used to enumerate registered emails.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for session lifecycle errors."""

    code = "auth_error"
    status = 400
    message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationFailed(AuthError):
    code = "validation_error"
    status = 400
    message = "Invalid request."


class InvalidCredentials(AuthError):
    code = "bad_credentials"
    status = 401
    message = "Invalid email/username or password."


class AlreadyExists(AuthError):
    code = "conflict"
    status = 409
    message = "Resource already exists."


class NotVerified(AuthError):
    code = "email_not_verified"
    status = 403
    message = "Please verify your email address."


class InvalidToken(AuthError):
    """Refresh token unknown, revoked, or consumed by a concurrent rotation."""

    code = "invalid_token"
    status = 401
    message = "Invalid refresh token."


class TokenExpired(AuthError):
    code = "token_expired"
    status = 401
    message = "Token has expired."


class InvalidSignature(AuthError):
    """Access token tampered with, signed by another key, or malformed."""

    code = "invalid_signature"
    status = 401
    message = "Invalid access token."


class InvalidVerificationCode(AuthError):
    code = "invalid_verification_code"
    status = 400
    message = "Invalid verification code."
