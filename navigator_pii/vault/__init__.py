"""Vault transit client — field-level PII encryption without local keys.

Security Note (Threat Model):
    The encryption key never leaves the transit engine. Plaintext exists in
    process memory only between decrypting a record and using it. With no
    credential configured every operation passes values through unchanged,
    so the application keeps working unencrypted; this is logged at startup.
"""

from .auth import AuthSession
from .codec import DEFAULT_PII_FIELDS, FieldCodec
from .config import AuthMode, VaultConfig
from .envelope import ENVELOPE_MARKER, is_envelope, key_version, parse_envelope
from .rewrap import RewrapOrchestrator, RewrapReport, RewrapState, rewrap_stores
from .transit import HealthStatus, TransitCipherClient
from .transport import VaultTransport

__all__ = [
    "AuthSession",
    "AuthMode",
    "DEFAULT_PII_FIELDS",
    "ENVELOPE_MARKER",
    "FieldCodec",
    "HealthStatus",
    "RewrapOrchestrator",
    "RewrapReport",
    "RewrapState",
    "TransitCipherClient",
    "VaultConfig",
    "VaultTransport",
    "is_envelope",
    "key_version",
    "parse_envelope",
    "rewrap_stores",
]
