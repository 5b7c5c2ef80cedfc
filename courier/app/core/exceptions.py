"""
Unified base exception classes for all services.

Each service raises concrete errors from the categories below so the API
layer can map them to HTTP responses and log them at the right level:

- ValidationFailed: caller-correctable input, never retried automatically
- ContentionError: expected under concurrent use, retry with other input
- TransitionError: an illegal state change was requested (caller bug)
- NotFoundError: referenced record does not exist for the store
- CompensationFailed: a rider could not be released after a failed assign
"""


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationFailed(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 422)


class ContentionError(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 409)


class TransitionError(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 409)


class NotFoundError(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 404)


class CompensationFailed(ServiceError):
    def __init__(self, message: str):
        super().__init__(message, 500)
