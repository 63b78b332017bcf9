# Overview: API error taxonomy shared by services and routes.

"""
Every business-rule or validation failure is raised as an ApiError subclass.
The application-level handler (see create_app) rolls back the session and
renders {"error": message} with the class status code.
"""


class ApiError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"error": self.message}


class BadRequest(ApiError):
    """400: malformed or policy-violating input."""
    status_code = 400
    default_message = "Bad Request"


class Unauthorized(ApiError):
    """401: missing or bad credentials."""
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(ApiError):
    """403: role or ownership denied."""
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not Found"


class Conflict(ApiError):
    """409: unique-constraint violation (duplicate utorid/email)."""
    status_code = 409
    default_message = "Conflict"


class Gone(ApiError):
    """410: time window violated (event ended, token expired or consumed)."""
    status_code = 410
    default_message = "Gone"
