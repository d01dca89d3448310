"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. Batch operations never let
them escape for a single item: they are converted into structured ``reason``
values (the exception class name) inside the result buckets.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkTimeRecord", resource_id=42)
    raise ValidationError("START event missing", details={"errors": [...]})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "WorkTimeRecord").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when data is well-formed but violates a business rule.

    Covers fatal event lifecycle defects (missing START, RESUME without a
    matching PAUSE, cycle without an end) and rejected corrections.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured breakdown (field errors, warnings).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation clashes with the current state of a resource.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class TransitionError(ConflictError):
    """Raised when a processing-status transition is not allowed."""

    def __init__(self, record_id: int, action: str, current_status: str | None, reason: str | None = None) -> None:
        self.resource = "WorkTimeRecord"
        self.field = "processing_status"
        self.value = current_status
        self.record_id = record_id
        self.action = action
        self.current_status = current_status
        msg = f"Cannot '{action}' record {record_id} (status={current_status or 'PENDING'})"
        if reason:
            msg += f": {reason}"
        Exception.__init__(self, msg)


class RecordLockedError(TransitionError):
    """Raised on a business edit of a record already transmitted to the ERP."""

    def __init__(self, record_id: int, action: str = "correct") -> None:
        super().__init__(
            record_id,
            action,
            "TRANSMITTED",
            "record already transmitted to the production-planning system",
        )


class TransportIneligible(Exception):
    """Raised when a record cannot be exported (productive duration <= 0).

    The downstream system refuses zero-duration records, so the rule is
    enforced before validation rather than at export time.
    """

    def __init__(self, record_id: int, productive_duration_min: int | None) -> None:
        self.record_id = record_id
        self.productive_duration_min = productive_duration_min
        super().__init__(
            f"Record {record_id} is not eligible for transport: "
            f"productive duration is {productive_duration_min} min"
        )


class ClassificationUnavailable(Exception):
    """Raised when the classification backend cannot answer (network, DB error).

    Distinct from a NOT_APPLICABLE answer, which is a normal outcome.
    """
