"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure a flow can end in is one of these classes. All of them are
reported the same way over HTTP (status 401 with {"message": ...}); the class
only tells the audit trail and the tests which kind of failure it was.

The message constants are the public, client-visible strings. Route handlers
and tests import them instead of repeating literals.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

ERROR_GA2FA_NO_CODE = "no 2FA code was provided"
ERROR_GA2FA_INCORRECT_CODE = "2FA code is incorrect"
ERROR_VALIDATION = "unauthorized"
ERROR_AUTH_EMPTY_PASSWORD = "empty password"
ERROR_AUTH_PASSWORD_NOT_MATCH = "password is not match"
ERROR_AUTH_USERNAME = "user with this username already exist"
ERROR_AUTH_EMAIL = "user with this email already exist"
ERROR_AUTH_EMPTY_EMAIL = "email must be provided"
ERROR_AUTH_INVALID_EMAIL = "account with that email address does not exist"
ERROR_AUTH_INVALID_RESET_TOKEN = "invalid reset token"
ERROR_AUTH_NO_USER = "no user found"
ERROR_AUTH_BAD_CREDENTIALS = "invalid email or password."
ERROR_AUTH_DISABLED = "account is disabled"


class AuthError(Exception):
    """Base class for every expected failure of an auth flow."""

    kind: str = "auth"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthValidationError(AuthError):
    """A required field is missing or empty."""

    kind = "validation"


class ConflictError(AuthError):
    """Username or e-mail already belongs to an active user."""

    kind = "conflict"


class AuthenticationError(AuthError):
    """Bad credentials, disabled account, or incorrect 2FA code."""

    kind = "authentication"


class NotFoundError(AuthError):
    """Unknown reset token or unknown user."""

    kind = "not_found"


class UpstreamError(AuthError):
    """The external token provider failed or answered with an error."""

    kind = "upstream"


class ProtectedRoleError(AuthError):
    """Attempt to disable or delete one of the three system roles."""

    kind = "protected_role"
