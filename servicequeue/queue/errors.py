"""Error kinds raised by the queue engine and surfaced by the HTTP layer."""

from __future__ import annotations


class QueueServiceError(RuntimeError):
    """Base error for expected queue failures; carries the HTTP status to report."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class QueueValidationError(QueueServiceError):
    """Raised when input is malformed before any store access happens."""

    status_code = 400


class NotFoundError(QueueServiceError):
    """Raised when a service, ticket, waiting ticket or current ticket is missing."""

    status_code = 404


class ConflictError(QueueServiceError):
    """Raised when a ticket's status forbids the requested transition."""

    status_code = 409

    def __init__(self, message: str, *, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class ForbiddenError(QueueServiceError):
    """Raised when the service is closed or the caller is not allowed."""

    status_code = 403


class UpstreamError(QueueServiceError):
    """Raised when the identity directory fails."""

    status_code = 502


class TransientStoreError(QueueServiceError):
    """Raised when the store transaction fails for non business reasons; safe to retry."""

    status_code = 500
