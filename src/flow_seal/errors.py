# errors.py
# Error taxonomy for the capture engine.
#
# Load-time errors (SchemaError, PolicyViolation raised by the loader) stop
# the process before a browser exists. Every other CaptureError is caught by
# the engine, classified by `kind`, and written into the sealed metadata.


class CaptureError(Exception):
    """Base class for every classified failure."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class SchemaError(CaptureError):
    """Raised when a flow plan is malformed."""


class PolicyViolation(CaptureError):
    """Raised on an illegal flag combination, a forbidden field or a mode-gate breach."""


class NotFoundError(CaptureError):
    """Raised when a selector resolves to zero elements."""


class AmbiguityError(CaptureError):
    """Raised when strict resolution matches more than one element. Never auto-resolved."""

    def __init__(self, selector: str, count: int) -> None:
        self.selector = selector
        self.count = count
        super().__init__(
            f'Ambiguity Error: selector "{selector}" matched {count} elements (expected 1).'
        )


class StabilityError(CaptureError):
    """Raised when a relaxed wait sees an unstable count or no visible match."""


class ActionError(CaptureError):
    """Raised when the page provider fails to carry out an action."""


class GoalError(CaptureError):
    """Raised when the terminal goal check is ambiguous or unmet."""

    def __init__(self, message: str, reason: str) -> None:
        self.reason = reason
        super().__init__(message)


class SealingError(CaptureError):
    """Raised when the manifest or packet hash cannot be built."""


class CyclicStructureError(SealingError):
    """Raised when canonicalization revisits a composite node."""
