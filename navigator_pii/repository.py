"""
PIIRepository — the single interception point between callers and a store.

Every write goes through ``FieldCodec.encrypt_fields`` and every read through
``FieldCodec.decrypt_fields``, so plaintext PII is never persisted. Engine
errors are not exposed to callers; they get a ``RecordOperationFailed``
chained to the original error.
"""
import copy
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Optional, Sequence

from .exceptions import RecordOperationFailed, TransitError
from .store import RecordStore
from .vault.codec import FieldCodec

logger = logging.getLogger("navigator.pii")


class PIIRepository:
    """Wraps a record store with field-level encryption.

    Args:
        store: Underlying record store.
        codec: Field codec bound to a transit client.
        fields: PII field names for this store (defaults to the codec's).
    """

    def __init__(
        self,
        store: RecordStore,
        codec: FieldCodec,
        fields: Optional[Sequence[str]] = None,
    ):
        self._store = store
        self._codec = codec
        self._fields = tuple(fields) if fields is not None else codec.fields

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def fields(self) -> tuple[str, ...]:
        return self._fields

    async def save(self, record: Any) -> Any:
        """Encrypt PII fields of a copy of record and persist it.

        The caller's record keeps its plaintext values.

        Returns:
            The stored record, decrypted.
        """
        pending = dict(record) if isinstance(record, Mapping) else copy.copy(record)
        try:
            await self._codec.encrypt_fields(pending, self._fields)
        except TransitError as err:
            logger.error(
                "Encrypting PII before save on %s failed: %s",
                self._store.name, err,
            )
            raise RecordOperationFailed("Unable to save record") from err
        stored = await self._store.save(pending)
        return await self._decrypt(stored if stored is not None else pending)

    async def find_one(self, filter: Mapping[str, Any]) -> Optional[Any]:
        """Fetch one record and decrypt its PII fields."""
        record = await self._store.find_one(filter)
        if record is None:
            return None
        return await self._decrypt(record)

    async def iterate(self) -> AsyncIterator[Any]:
        """Yield every record of the store with PII decrypted."""
        async for record in self._store.cursor():
            yield await self._decrypt(record)

    async def _decrypt(self, record: Any) -> Any:
        try:
            return await self._codec.decrypt_fields(record, self._fields)
        except TransitError as err:
            logger.error(
                "Decrypting PII on %s failed: %s", self._store.name, err,
            )
            raise RecordOperationFailed("Unable to read record") from err
