"""
Vault Rewrap — Move stored ciphertext onto the newest transit key version.

Run after rotating the transit key. Streams every record of a store in
batches, asks the engine to rewrap each envelope and saves only the records
whose envelopes actually moved to a newer key version. The operation is
idempotent: re-running it without a new rotation performs zero writes, and an
interrupted run can simply be started again.

Security Note:
    Plaintext never reaches this process; rewrap takes ciphertext in and
    returns ciphertext out. Never log ciphertext values.
"""
import asyncio
import logging
from collections import Counter
from enum import Enum
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from .codec import DEFAULT_PII_FIELDS, get_field, set_field
from .envelope import is_envelope, key_version
from .transit import TransitCipherClient
from ..exceptions import AuthenticationFailure
from ..store import RecordStore

logger = logging.getLogger("navigator.pii")


class RewrapState(str, Enum):
    SCANNING = "scanning"
    INSPECTING = "inspecting"
    REWRAPPING = "rewrapping"
    PERSISTING = "persisting"
    DONE = "done"


class RewrapFailure(BaseModel):
    record_id: Optional[str] = None
    error: str


class RewrapReport(BaseModel):
    """Outcome of one rewrap run over a store."""

    store: str = ""
    scanned: int = 0
    rewrapped: int = 0
    unchanged: int = 0
    failures: list[RewrapFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


def _record_id(record: Any) -> Optional[str]:
    for name in ("_id", "id"):
        value = get_field(record, name)
        if isinstance(value, (str, int)):
            return str(value)
    return None


class RewrapOrchestrator:
    """Rewraps every envelope of a record store with bounded concurrency.

    Args:
        client: Transit client used for ``rewrap``.
        batch_size: Records pulled from the cursor before processing.
        concurrency: Records processed at once inside a batch.

    ``state`` is the run-level state (SCANNING while a run is active, DONE
    otherwise). ``in_flight`` counts the records currently INSPECTING,
    REWRAPPING or PERSISTING.
    """

    def __init__(
        self,
        client: TransitCipherClient,
        batch_size: int = 100,
        concurrency: int = 10,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._client = client
        self._batch_size = batch_size
        self._concurrency = concurrency
        self.state = RewrapState.DONE
        self.in_flight: Counter = Counter()

    async def run(
        self,
        store: RecordStore,
        fields: Optional[Sequence[str]] = None,
    ) -> RewrapReport:
        """Rewrap all PII fields of every record in store.

        Args:
            store: Record store exposing ``cursor()`` and ``save()``.
            fields: PII field names (defaults to DEFAULT_PII_FIELDS).

        Returns:
            RewrapReport with scanned/rewrapped/unchanged counts and failures.

        Raises:
            AuthenticationFailure: If the engine rejects the role credentials.
        """
        fields = tuple(fields if fields is not None else DEFAULT_PII_FIELDS)
        name = getattr(store, "name", type(store).__name__)
        report = RewrapReport(store=name)
        if not self._client.configured:
            logger.warning("Vault not configured; skipping rewrap of %s", name)
            return report

        logger.info(
            "Starting rewrap of %s (fields=%s, batch_size=%d)",
            name, list(fields), self._batch_size,
        )
        semaphore = asyncio.Semaphore(self._concurrency)
        batch: list[Any] = []
        batch_num = 0
        self.state = RewrapState.SCANNING
        async for record in store.cursor():
            batch.append(record)
            if len(batch) >= self._batch_size:
                batch_num += 1
                await self._rewrap_batch(store, batch, fields, semaphore, report)
                logger.info(
                    "Batch %d done: %d scanned, %d rewrapped so far",
                    batch_num, report.scanned, report.rewrapped,
                )
                batch = []
                self.state = RewrapState.SCANNING

        if batch:
            await self._rewrap_batch(store, batch, fields, semaphore, report)

        self.state = RewrapState.DONE
        logger.info(
            "Rewrap of %s complete: scanned=%d rewrapped=%d unchanged=%d failed=%d",
            name, report.scanned, report.rewrapped, report.unchanged, report.failed,
        )
        return report

    async def _rewrap_batch(
        self,
        store: RecordStore,
        batch: list[Any],
        fields: tuple[str, ...],
        semaphore: asyncio.Semaphore,
        report: RewrapReport,
    ) -> None:
        async def guarded(record: Any) -> None:
            async with semaphore:
                await self._rewrap_record(store, record, fields, report)

        tasks = [asyncio.ensure_future(guarded(record)) for record in batch]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # stop the rest of the batch on abort or cancellation
            for task in tasks:
                task.cancel()
            raise

    def _enter(self, state: RewrapState, previous: Optional[RewrapState] = None) -> RewrapState:
        if previous is not None:
            self.in_flight[previous] -= 1
        self.in_flight[state] += 1
        return state

    async def _rewrap_record(
        self,
        store: RecordStore,
        record: Any,
        fields: tuple[str, ...],
        report: RewrapReport,
    ) -> None:
        report.scanned += 1
        record_id = _record_id(record)
        state = self._enter(RewrapState.INSPECTING)
        try:
            stale = []
            for field in fields:
                value = get_field(record, field)
                if is_envelope(value):
                    stale.append((field, value))
            if not stale:
                report.unchanged += 1
                return
            state = self._enter(RewrapState.REWRAPPING, state)
            changed = False
            for field, value in stale:
                new_value = await self._client.rewrap(value)
                old_v, new_v = key_version(value), key_version(new_value)
                if new_v is not None and (old_v is None or new_v > old_v):
                    set_field(record, field, new_value)
                    changed = True
            if not changed:
                report.unchanged += 1
                return
            state = self._enter(RewrapState.PERSISTING, state)
            await store.save(record)
            report.rewrapped += 1
        except AuthenticationFailure:
            raise
        except Exception as err:
            logger.error("Error rewrapping record id=%s: %s", record_id, err)
            report.failures.append(RewrapFailure(record_id=record_id, error=str(err)))
        finally:
            self.in_flight[state] -= 1


async def rewrap_stores(
    client: TransitCipherClient,
    targets: Sequence[tuple[RecordStore, Sequence[str]]],
    batch_size: int = 100,
    concurrency: int = 10,
) -> tuple[list[RewrapReport], int]:
    """Rewrap several stores one after another.

    Args:
        client: Transit client used for ``rewrap``.
        targets: ``(store, fields)`` pairs, one per collection holding PII.

    Returns:
        Tuple of (per-store reports, total records rewrapped).
    """
    orchestrator = RewrapOrchestrator(
        client, batch_size=batch_size, concurrency=concurrency,
    )
    reports = []
    for store, fields in targets:
        reports.append(await orchestrator.run(store, fields))
    total = sum(r.rewrapped for r in reports)
    logger.info("Done. Total records rewrapped: %d", total)
    return reports, total
