class AppError(Exception):
    """Operational error with an HTTP status, rendered in the error envelope."""

    status_code: int = 400

    def __init__(self, message: str, status_code: int | None = None, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors or [message]


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message)


class GoneError(AppError):
    status_code = 410

    def __init__(self, message: str = "Resource no longer available") -> None:
        super().__init__(message)


class UnauthorizedError(AppError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409

    def __init__(self, message: str = "Resource already exists") -> None:
        super().__init__(message)


class ValidationError(AppError):
    status_code = 422

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Validation failed", errors=errors)
