"""
Structured errors surfaced to API callers. Each kind maps one-to-one to an HTTP status.
"""


class ApiError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "status": self.status_code, "message": self.message}


class BadRequestError(ApiError):
    kind = "bad-request"
    status_code = 400


class ForbiddenError(ApiError):
    kind = "forbidden"
    status_code = 403


class NotFoundError(ApiError):
    kind = "not-found"
    status_code = 404


class InternalError(ApiError):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str, cause: Exception | None = None):
        # Only the exception text is appended; tracebacks stay in the logs
        if cause is not None and str(cause):
            message = f"{message}. {cause}"
        super().__init__(message)
