"""Error taxonomy shared by the REST routes and the tracking socket."""


class AppError(Exception):
    """Base class for errors that are reported back to the caller."""

    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class AuthenticationError(AppError):
    """Missing, malformed or expired credential."""

    status_code = 401


class ForbiddenError(AppError):
    """Authenticated, but not the owner of the resource."""

    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ValidationError(AppError):
    """Malformed request or event payload."""

    status_code = 400


class RolePermissionError(AppError):
    """The connection's role is not allowed to perform the action.

    Named so it does not shadow the builtin PermissionError (an OSError).
    """

    status_code = 403


class OtpServiceError(AppError):
    """The OTP provider is unavailable or rejected the request."""

    status_code = 502
