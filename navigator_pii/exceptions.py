"""
Error taxonomy for the transit engine client.

Engine errors never carry plaintext or ciphertext values in their messages,
only indices, field names, HTTP status codes and engine error strings.
"""
from typing import Any, Optional


class TransitError(Exception):
    """Base class for every error raised by navigator_pii."""


class AuthenticationFailure(TransitError):
    """Role login failed (bad role credentials, unreachable or sealed engine)."""


class EngineUnavailable(TransitError):
    """The engine could not be reached or is not able to serve requests."""


class EngineTimeout(EngineUnavailable):
    """A request exceeded its deadline."""


class EngineSealed(EngineUnavailable):
    """The engine answered but reports itself as sealed."""


class EngineResponseError(TransitError):
    """The engine answered with a non-2xx status code.

    Args:
        status: HTTP status code.
        errors: Error strings reported by the engine.
        body: Parsed response body (may still carry batch results).
    """

    def __init__(
        self,
        status: int,
        errors: Optional[list[str]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status = status
        self.errors = errors or []
        self.body = body or {}
        detail = ", ".join(self.errors) or "no error detail"
        super().__init__(f"Vault error {status}: {detail}")


class CipherOperationFailure(TransitError):
    """The engine refused to encrypt, decrypt or rewrap one item.

    Args:
        operation: ``encrypt``, ``decrypt`` or ``rewrap``.
        reason: Engine error message.
        index: Position of the item inside its batch (None for single calls).
    """

    def __init__(
        self,
        operation: str,
        reason: str,
        index: Optional[int] = None,
    ) -> None:
        self.operation = operation
        self.reason = reason
        self.index = index
        where = f" (item {index})" if index is not None else ""
        super().__init__(f"Vault {operation} failed{where}: {reason}")


class BatchOperationFailure(CipherOperationFailure):
    """One or more items of a batch request failed.

    ``failures`` maps each failed position (in the caller's original list)
    to the engine message. ``results`` holds the processed values for every
    position that succeeded, and ``None`` for the failed ones.
    """

    def __init__(
        self,
        operation: str,
        failures: dict[int, str],
        results: list[Optional[str]],
    ) -> None:
        self.failures = failures
        self.results = results
        first = min(failures)
        super().__init__(
            operation,
            f"{len(failures)} of {len(results)} item(s) failed, "
            f"first at index {first}: {failures[first]}",
            index=first,
        )

    @property
    def failed_indices(self) -> list[int]:
        return sorted(self.failures)


class ValidationFailure(TransitError):
    """A value that had to be a ciphertext envelope is not one."""


class RecordOperationFailed(Exception):
    """Generic failure surfaced to record consumers for PII operations.

    The engine error that caused it is chained as ``__cause__``.
    """
