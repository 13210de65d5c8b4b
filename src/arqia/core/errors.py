"""Typed errors surfaced by the redesign core.

Every failure a caller can observe is a :class:`RedesignError` subclass with a
stable ``kind`` string and a human-readable ``detail``.  The relay uses
``kind`` to pick an HTTP status; UI callers use it to render each case
differently (for example offering "try again" on a timeout).

=========================  ====================  ===========================
Exception                  kind                  Raised when
=========================  ====================  ===========================
UnknownStyleError          ``unknown_style``     style id not in the catalog
InvalidImageError          ``invalid_image``     missing/malformed/unsupported
SubmissionFailedError      ``submission_failed`` backend rejected the request
GenerationFailedError      ``generation_failed`` backend reported failure
GenerationCanceledError    ``canceled``          job was canceled
GenerationTimedOutError    ``timed_out``         time budget exhausted
TransportError             ``transport_error``   backend unreachable
=========================  ====================  ===========================

None of these are retried inside the core.
"""

from __future__ import annotations


class RedesignError(Exception):
    """Base class for all redesign failures.

    Attributes:
        kind: Stable machine-readable error kind.
        detail: Human-readable description, preserved verbatim from the
            backend where one was supplied.
        retryable: Hint for callers; ``True`` only where resubmitting the
            same request is a reasonable next step.
    """

    kind: str = "error"
    retryable: bool = False

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class UnknownStyleError(RedesignError):
    """The requested style id has no catalog entry."""

    kind = "unknown_style"

    def __init__(self, style_id: str) -> None:
        super().__init__(f"Unknown style: {style_id}")
        self.style_id = style_id


class InvalidImageError(RedesignError):
    """The source image is missing, malformed, or of an unsupported type."""

    kind = "invalid_image"


class SubmissionFailedError(RedesignError):
    """The backend refused to create the job."""

    kind = "submission_failed"

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class GenerationFailedError(RedesignError):
    """The backend ran the job and reported a failure."""

    kind = "generation_failed"


class GenerationCanceledError(RedesignError):
    """The job was canceled by a user or operator."""

    kind = "canceled"


class GenerationTimedOutError(RedesignError):
    """The job did not finish within the client-side time budget."""

    kind = "timed_out"
    retryable = True


class TransportError(RedesignError):
    """The backend could not be reached at all."""

    kind = "transport_error"


class InvalidTransitionError(RuntimeError):
    """A job state change that the lifecycle does not allow."""
