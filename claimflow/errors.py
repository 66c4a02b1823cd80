"""Error taxonomy for the claim pipeline.

Every error carries a ``retryable`` flag. The job queue consults it to decide
between scheduling another attempt and failing the job terminally; exceptions
that are not ``ClaimflowError`` instances are treated as retryable.
"""


class ClaimflowError(Exception):
    """Base class for pipeline errors."""

    retryable = False


class NotFound(ClaimflowError):
    """A claim, verdict or job does not exist."""


class InvalidState(ClaimflowError):
    """The operation is not valid for the claim's current lifecycle state."""


class TransientAnalyzerError(ClaimflowError):
    """Network failure, timeout or overload while calling the analyzer."""

    retryable = True


class PermanentAnalyzerError(ClaimflowError):
    """The analyzer rejected the input; retrying cannot help."""


class ConfigurationError(ClaimflowError):
    """Duplicate handler registration or a misconfigured queue policy."""


class InvariantViolation(ClaimflowError):
    """A stored record breaks an authorship invariant."""


def is_retryable(exc: BaseException) -> bool:
    """Return whether the queue should schedule another attempt after ``exc``."""
    return getattr(exc, "retryable", True)
