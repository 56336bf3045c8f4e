"""Domain exceptions for the automation core.

Defines exceptions for rule configuration errors, job state violations and
job handler outcomes. Handler exceptions drive the worker's retry decision:
PermanentJobError dead-letters immediately, JobTimeoutError and any other
exception count as a transient failed attempt.
"""

from typing import Any


class SellerOpsException(Exception):
    """Base exception for all automation core errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. field, resource_id).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API error responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(SellerOpsException):
    """Raised when input validation fails (e.g. invalid format or range)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class ResourceNotFoundException(SellerOpsException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: str | int) -> None:
        """Initialize with resource type and id.

        Args:
            resource_type: Type of resource (e.g. 'job', 'dead_letter').
            resource_id: The ID that was not found.
        """
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": str(resource_id)},
        )


class RuleDefinitionException(SellerOpsException):
    """Raised when a rule configuration cannot be parsed."""

    def __init__(self, message: str, rule_id: str | None = None) -> None:
        details = {"rule_id": rule_id} if rule_id else {}
        super().__init__(message, "RULE_DEFINITION_ERROR", details)


class InvalidJobStateException(SellerOpsException):
    """Raised when a job or dead letter is not in a state that allows the operation."""

    def __init__(self, job_id: int, current: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} job {job_id} in state {current}",
            "INVALID_JOB_STATE",
            {"job_id": job_id, "status": current, "operation": operation},
        )


class StoreUnavailableException(SellerOpsException):
    """Raised when the job store, cooldown store or event bus cannot be reached.

    Fatal: no job processing proceeds until the store is back.
    """

    def __init__(self, store: str, reason: str) -> None:
        super().__init__(
            f"{store} unavailable: {reason}",
            "STORE_UNAVAILABLE",
            {"store": store, "reason": reason},
        )


class PermanentJobError(SellerOpsException):
    """Raised by a job handler to signal a non-retryable failure.

    The job is dead-lettered immediately regardless of remaining attempts.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, "PERMANENT_JOB_FAILURE", details)


class UnknownJobTypeError(PermanentJobError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str) -> None:
        super().__init__(
            f"No handler registered for job type {job_type}",
            {"job_type": job_type},
        )
        self.error_code = "UNKNOWN_JOB_TYPE"


class JobTimeoutError(SellerOpsException):
    """Raised when a handler exceeds its per-type timeout. Counts as a failed attempt."""

    def __init__(self, job_type: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Job {job_type} timed out after {timeout_seconds:g}s",
            "JOB_TIMEOUT",
            {"job_type": job_type, "timeout_seconds": timeout_seconds},
        )


class JobCancelledError(SellerOpsException):
    """Raised by a handler that observed its job being cancelled."""

    def __init__(self, job_id: int) -> None:
        super().__init__(
            f"Job {job_id} was cancelled", "JOB_CANCELLED", {"job_id": job_id}
        )
