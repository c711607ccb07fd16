"""
Ciphertext envelope helpers.

Engine ciphertext looks like ``vault:v<N>:<payload>``. Anything that does not
start with the ``vault:`` marker is plaintext, which lets rows written before
encryption was enabled coexist with encrypted ones.
"""
import re
from typing import Any, Optional

from ..exceptions import ValidationFailure

ENVELOPE_MARKER = "vault:"

_ENVELOPE_PATTERN = re.compile(r"^vault:v(\d+):(.+)$", re.DOTALL)


def is_envelope(value: Any) -> bool:
    """True if value carries the engine ciphertext marker."""
    return isinstance(value, str) and value.startswith(ENVELOPE_MARKER)


def parse_envelope(value: Any) -> tuple[int, str]:
    """Split an envelope into its key version and opaque payload.

    Args:
        value: Envelope string.

    Returns:
        Tuple of (key_version, payload).

    Raises:
        ValidationFailure: If value is not a well-formed envelope.
    """
    if not isinstance(value, str):
        raise ValidationFailure(
            f"Expected a ciphertext envelope, got {type(value).__name__}"
        )
    match = _ENVELOPE_PATTERN.match(value)
    if not match:
        raise ValidationFailure("Value is not a well-formed ciphertext envelope")
    return int(match.group(1)), match.group(2)


def key_version(value: Any) -> Optional[int]:
    """Key version embedded in an envelope, or None for anything else."""
    try:
        return parse_envelope(value)[0]
    except ValidationFailure:
        return None
