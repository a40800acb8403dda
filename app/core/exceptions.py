from typing import List, Optional


class AppException(Exception):
    """Base error carrying the HTTP status it is rendered with."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)


class ValidationError(AppException):
    status_code = 400


class NotFoundError(AppException):
    status_code = 404


class ConflictError(AppException):
    status_code = 409


class AlreadyEnrolledError(ConflictError):
    pass


class DependencyError(AppException):
    """Blob store or payment provider call failed."""

    status_code = 500


class TransactionError(AppException):
    """Database transaction aborted; nothing was written."""

    status_code = 500


class WebhookError(AppException):
    status_code = 500
