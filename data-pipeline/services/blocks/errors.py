"""Error taxonomy for end-of-day block resolution.

Every failure the engine raises on purpose is a ``BlockFinderError`` tagged
with an ``ErrorKind``. Callers branch on ``error.kind`` instead of the
concrete class; the subclasses only pin the kind and keep ``except`` clauses
readable.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    VALIDATION = "validation"
    RPC_FAILURE = "rpc_failure"
    SEARCH_INVARIANT = "search_invariant"


class BlockFinderError(Exception):
    """Domain error with a structured context payload.

    The rendered message is self-contained so it can be logged and acted on
    as-is::

        All blocks in range are after midnight
          Operation: findEndOfDayBlock
          Date: 2024-01-15
          Search bounds: 100 to 200
          Check: Move the search window earlier
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        hint: str = "",
        cause: Optional[BaseException] = None,
        kind: Optional[ErrorKind] = None,
    ):
        self.message = message
        self.operation = operation
        self.context: Dict[str, Any] = dict(context or {})
        self.hint = hint
        self.cause = cause
        if kind is not None:
            self.kind = kind
        super().__init__(self._render())

    def _render(self) -> str:
        lines = [self.message, f"  Operation: {self.operation}"]
        for label, value in self.context.items():
            lines.append(f"  {label}: {value}")
        if self.cause is not None:
            lines.append(f"  Error: {self.cause}")
        if self.hint:
            lines.append(f"  Check: {self.hint}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Flat representation for structured logs."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "operation": self.operation,
            "context": {k: str(v) for k, v in self.context.items()},
            "hint": self.hint,
            "cause": str(self.cause) if self.cause is not None else None,
        }


class DateRangeValidationError(BlockFinderError):
    """Raised for malformed or inverted date ranges."""
    kind = ErrorKind.VALIDATION


class SearchBoundsError(BlockFinderError):
    """Raised when a search window has ``lower > upper``."""
    kind = ErrorKind.VALIDATION


class StoreValidationError(BlockFinderError):
    """Raised when an index record fails validation on read or write."""
    kind = ErrorKind.VALIDATION


class RpcFailureError(BlockFinderError):
    """Raised when an RPC call still fails after all retries."""
    kind = ErrorKind.RPC_FAILURE


class SearchInvariantError(BlockFinderError):
    """Raised when chain data contradicts what the search needs.

    Retrying with the same bounds cannot help; the operator has to widen the
    window or wait for more blocks.
    """
    kind = ErrorKind.SEARCH_INVARIANT


def is_domain_error(error: BaseException) -> bool:
    return isinstance(error, BlockFinderError)


def is_retryable(error: BaseException) -> bool:
    """Retry predicate for RPC call sites: domain errors are final."""
    return not is_domain_error(error)
