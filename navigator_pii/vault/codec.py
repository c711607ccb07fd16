"""
FieldCodec — field-level PII encryption for arbitrary records.

Records are either mappings (``record["email"]``) or attribute-style objects
(``record.email``, e.g. datamodel or pydantic models). Each call batches the
selected fields of ONE record into a single engine request, so a failed batch
only affects that record.
"""
import asyncio
import logging
from collections.abc import Iterable, Mapping, MutableMapping
from typing import Any, Optional, Sequence

from .envelope import is_envelope
from .transit import TransitCipherClient

logger = logging.getLogger("navigator.pii")

# Fields that should never be stored in plaintext
DEFAULT_PII_FIELDS: tuple[str, ...] = (
    "email",
    "phone",
    "fullName",
    "address",
    "dateOfBirth",
)

_MISSING = object()


def get_field(record: Any, name: str) -> Any:
    """Read a field from a mapping or an attribute-style record."""
    if isinstance(record, Mapping):
        return record.get(name, _MISSING)
    return getattr(record, name, _MISSING)


def set_field(record: Any, name: str, value: Any) -> None:
    """Write a field onto a mapping or an attribute-style record."""
    if isinstance(record, MutableMapping):
        record[name] = value
    else:
        setattr(record, name, value)


class FieldCodec:
    """Encrypts and decrypts named PII fields through a transit client."""

    def __init__(
        self,
        client: TransitCipherClient,
        fields: Sequence[str] = DEFAULT_PII_FIELDS,
    ):
        self._client = client
        self._fields = tuple(fields)

    @property
    def client(self) -> TransitCipherClient:
        return self._client

    @property
    def fields(self) -> tuple[str, ...]:
        return self._fields

    def _select(
        self,
        record: Any,
        fields: Optional[Sequence[str]],
        encrypting: bool,
    ) -> tuple[list[str], list[str]]:
        names: list[str] = []
        values: list[str] = []
        for name in dict.fromkeys(fields if fields is not None else self._fields):
            value = get_field(record, name)
            if not isinstance(value, str) or not value:
                continue
            if encrypting and is_envelope(value):
                continue
            names.append(name)
            values.append(value)
        return names, values

    async def encrypt_fields(
        self,
        record: Any,
        fields: Optional[Sequence[str]] = None,
    ) -> Any:
        """Encrypt every named plaintext field of record in place.

        Absent, empty, non-string and already-encrypted fields are left as
        they are, so calling this twice is a no-op the second time.

        Returns:
            The same record.
        """
        names, values = self._select(record, fields, encrypting=True)
        if not values:
            return record
        ciphertexts = await self._client.encrypt_batch(values)
        for name, value in zip(names, ciphertexts):
            set_field(record, name, value)
        return record

    async def decrypt_fields(
        self,
        record: Any,
        fields: Optional[Sequence[str]] = None,
    ) -> Any:
        """Decrypt every named field of record in place.

        Plaintext values written before encryption was enabled pass through.

        Returns:
            The same record.
        """
        names, values = self._select(record, fields, encrypting=False)
        if not values:
            return record
        plaintexts = await self._client.decrypt_batch(values)
        for name, value in zip(names, plaintexts):
            set_field(record, name, value)
        return record

    async def encrypt_many(
        self,
        records: Iterable[Any],
        fields: Optional[Sequence[str]] = None,
    ) -> list[Any]:
        records = list(records)
        await asyncio.gather(*(self.encrypt_fields(r, fields) for r in records))
        return records

    async def decrypt_many(
        self,
        records: Iterable[Any],
        fields: Optional[Sequence[str]] = None,
    ) -> list[Any]:
        """Decrypt each record independently; one request per record."""
        records = list(records)
        await asyncio.gather(*(self.decrypt_fields(r, fields) for r in records))
        return records
