"""Navigator PII.

Keeps personally-identifying record fields encrypted at rest through a
Vault transit engine.
"""
from .version import __version__
from .exceptions import (
    AuthenticationFailure,
    BatchOperationFailure,
    CipherOperationFailure,
    EngineResponseError,
    EngineSealed,
    EngineTimeout,
    EngineUnavailable,
    RecordOperationFailed,
    TransitError,
    ValidationFailure,
)
from .repository import PIIRepository
from .store import MemoryRecordStore, RecordStore
from .vault import (
    DEFAULT_PII_FIELDS,
    FieldCodec,
    RewrapOrchestrator,
    TransitCipherClient,
    VaultConfig,
)
