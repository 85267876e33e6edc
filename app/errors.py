from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class NotFoundError(ApiError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(
            code=code,
            message=message,
            error_class="validation",
            retryable=False,
            http_status=404,
        )


class InvalidArgumentError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="REQ_VALIDATION_FAILED",
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
        )


class InvalidTransitionError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="CR_STATE_TRANSITION_INVALID",
            message=message,
            error_class="business_rule",
            retryable=False,
            http_status=409,
        )


class ConflictRetryableError(ApiError):
    """A concurrent write on the same rows was detected by the storage backend."""

    def __init__(self, message: str = "concurrent write conflict, retry the operation") -> None:
        super().__init__(
            code="CR_WRITE_CONFLICT",
            message=message,
            error_class="transient",
            retryable=True,
            http_status=409,
        )


def request_not_found(request_id: str) -> NotFoundError:
    return NotFoundError(
        code="CERTIFICATE_REQUEST_NOT_FOUND",
        message=f"certificate request not found: {request_id}",
    )
