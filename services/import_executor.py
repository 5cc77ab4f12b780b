"""
Import executor.

Applies an ImportPlan to a CatalogStore in bounded batches and returns an
ImportReport. Also holds the small concurrency kit an import needs:

    WholesalerLocks    at most one import per wholesaler
    ProgressChannel    latest-value-wins progress, thread -> event loop
    CancellationToken  cooperative stop flag, checked between batches

Mode semantics:
    replace        shadow-write every batch, swap on commit; any batch
                   failure or a cancel before commit rolls everything back
    append/update  each batch commits on its own; failures are recorded per
                   row and the run continues; a cancel stops further batches
                   but never undoes committed ones
"""

import asyncio
import threading
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterator, Optional

import structlog

from exceptions import ImportBatchError, ImportInProgressError
from models.catalog import (
    ImportMode,
    ImportPlan,
    ImportProgress,
    ImportReport,
    ImportStatus,
    PlanAction,
    PlanItem,
    RowFailure,
)
from services.catalog_store import CatalogStore
from services.reconciliation import plan_notes

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[ImportProgress], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ===================
# CONCURRENCY KIT
# ===================

class CancellationToken:
    """Cooperative cancel flag shared between a caller and a running import."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ImportLease:
    """
    Proof that the holder owns a wholesaler's import lock.

    release() is idempotent; the lease is also a context manager.
    """

    def __init__(self, wholesaler_id: str, lock: threading.Lock):
        self.wholesaler_id = wholesaler_id
        self._lock = lock
        self._released = False
        self._guard = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._guard:
            if self._released:
                return
            self._released = True
        self._lock.release()
        logger.debug("import_lock_released", wholesaler_id=self.wholesaler_id)

    def __enter__(self) -> "ImportLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class WholesalerLocks:
    """
    One lock per wholesaler.

    Locks are process-local; running several API workers needs a shared
    lock instead.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, wholesaler_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(wholesaler_id, threading.Lock())

    def acquire(self, wholesaler_id: str) -> ImportLease:
        """
        Take the wholesaler's lock without waiting.

        Raises:
            ImportInProgressError: If another import holds it
        """
        lock = self._lock_for(wholesaler_id)
        if not lock.acquire(blocking=False):
            logger.warning("import_already_running", wholesaler_id=wholesaler_id)
            raise ImportInProgressError(wholesaler_id)
        logger.debug("import_lock_acquired", wholesaler_id=wholesaler_id)
        return ImportLease(wholesaler_id, lock)

    def is_locked(self, wholesaler_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(wholesaler_id)
        return lock is not None and lock.locked()


class ProgressChannel:
    """
    Latest-value-wins progress hand-off from a worker thread to the event loop.

    publish() never blocks: a value the consumer has not read yet is simply
    overwritten. Must be created on the loop that iterates it.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._lock = threading.Lock()
        self._latest: Optional[ImportProgress] = None
        self._closed = False
        self._wakeup = asyncio.Event()

    def publish(self, progress: ImportProgress) -> None:
        with self._lock:
            if self._closed:
                return
            self._latest = progress
        self._loop.call_soon_threadsafe(self._wakeup.set)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._loop.call_soon_threadsafe(self._wakeup.set)

    async def __aiter__(self) -> AsyncIterator[ImportProgress]:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            with self._lock:
                latest, self._latest = self._latest, None
                closed = self._closed
            if latest is not None:
                yield latest
            if closed:
                return


# ===================
# EXECUTOR
# ===================

def _chunks(items: list[PlanItem], size: int) -> Iterator[list[PlanItem]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class _ProgressTracker:
    """Turns batch completions into monotonically increasing ImportProgress."""

    def __init__(
        self,
        wholesaler_id: str,
        batches_total: int,
        steps_total: int,
        rows_total: int,
        callback: Optional[ProgressCallback],
    ):
        self.wholesaler_id = wholesaler_id
        self.batches_total = batches_total
        self.steps_total = steps_total
        self.rows_total = rows_total
        self.callback = callback
        self.steps_done = 0
        self.batches_done = 0
        self.rows_done = 0

    def batch_done(self, rows: int) -> None:
        self.batches_done += 1
        self.rows_done += rows
        self.step()

    def step(self) -> None:
        self.steps_done += 1
        self._emit(min(self.steps_done / self.steps_total, 1.0) if self.steps_total else 1.0)

    def finish(self) -> None:
        self._emit(1.0)

    def _emit(self, fraction: float) -> None:
        if self.callback is None:
            return
        self.callback(ImportProgress(
            wholesaler_id=self.wholesaler_id,
            fraction=fraction,
            batches_completed=self.batches_done,
            batches_total=self.batches_total,
            rows_processed=self.rows_done,
            rows_total=self.rows_total,
        ))


class ImportExecutor:
    """
    Executes import plans against a CatalogStore.

    Trusts the plan completely: rows are never re-validated here.
    """

    def __init__(
        self,
        store: CatalogStore,
        locks: Optional[WholesalerLocks] = None,
        batch_size: int = 100,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.locks = locks or WholesalerLocks()
        self.batch_size = batch_size
        self.clock = clock or utc_now

    def execute(
        self,
        plan: ImportPlan,
        *,
        lease: Optional[ImportLease] = None,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ImportReport:
        """
        Apply a plan.

        Args:
            plan: Reconciled plan
            lease: Lock already held by the caller; acquired (and released)
                here when omitted
            progress: Non-blocking callback, called after each batch
            cancel: Checked before each batch and before the replace commit

        Returns:
            ImportReport accounting for every row of the plan

        Raises:
            ImportInProgressError: If no lease was given and another import
                for the wholesaler is running
        """
        owned = lease is None
        if lease is None:
            lease = self.locks.acquire(plan.wholesaler_id)

        try:
            return self._execute(plan, progress, cancel or CancellationToken())
        finally:
            if owned:
                lease.release()

    def _execute(
        self,
        plan: ImportPlan,
        progress: Optional[ProgressCallback],
        cancel: CancellationToken,
    ) -> ImportReport:
        writes = plan.writes
        batches = list(_chunks(writes, self.batch_size))
        is_replace = plan.mode == ImportMode.REPLACE

        tracker = _ProgressTracker(
            plan.wholesaler_id,
            batches_total=len(batches),
            steps_total=len(batches) + (1 if is_replace else 0),
            rows_total=len(writes),
            callback=progress,
        )
        report = ImportReport(
            wholesaler_id=plan.wholesaler_id,
            mode=plan.mode,
            status=ImportStatus.COMPLETED,
            total_rows=plan.total_rows,
            invalid=plan.invalid,
            skipped=len(plan.skips),
            notes=plan_notes(plan),
            started_at=self.clock(),
        )

        logger.info(
            "import_started",
            wholesaler_id=plan.wholesaler_id,
            mode=plan.mode.value,
            rows=len(writes),
            batches=len(batches),
            skipped=report.skipped
        )

        if is_replace:
            self._replace(plan, batches, report, tracker, cancel)
        else:
            self._merge(plan, batches, report, tracker, cancel)

        if report.status == ImportStatus.COMPLETED:
            tracker.finish()

        report.finished_at = self.clock()
        report.message = _summary(report)

        logger.info(
            "import_finished",
            wholesaler_id=plan.wholesaler_id,
            mode=plan.mode.value,
            status=report.status.value,
            inserted=report.inserted,
            updated=report.updated,
            skipped=report.skipped,
            failed=report.failed,
            deleted=report.deleted,
            batches_committed=report.batches_committed
        )
        return report

    def _replace(
        self,
        plan: ImportPlan,
        batches: list[list[PlanItem]],
        report: ImportReport,
        tracker: _ProgressTracker,
        cancel: CancellationToken,
    ) -> None:
        replacement = self.store.begin_replace(plan.wholesaler_id)
        writes = [item for batch in batches for item in batch]

        try:
            for batch in batches:
                if cancel.cancelled:
                    break
                timestamp = self.clock()
                replacement.write([item.record.stamped(timestamp) for item in batch])
                tracker.batch_done(len(batch))

            if cancel.cancelled:
                replacement.rollback()
                report.status = ImportStatus.CANCELLED
                report.unprocessed_rows = [item.row_number for item in writes]
                logger.info("import_cancelled", wholesaler_id=plan.wholesaler_id, mode="replace")
                return

            report.deleted = replacement.commit()
        except ImportBatchError as e:
            replacement.rollback()
            logger.error(
                "import_batch_failed",
                wholesaler_id=plan.wholesaler_id,
                mode="replace",
                error=e.message
            )
            report.status = ImportStatus.FAILED
            report.failed = len(writes)
            report.failures = [
                RowFailure(
                    row_number=item.row_number,
                    product_code=item.record.product_code,
                    error=e.message,
                )
                for item in writes
            ]
            return

        tracker.step()
        report.inserted = len(writes)
        report.batches_committed = len(batches)

    def _merge(
        self,
        plan: ImportPlan,
        batches: list[list[PlanItem]],
        report: ImportReport,
        tracker: _ProgressTracker,
        cancel: CancellationToken,
    ) -> None:
        failures: list[RowFailure] = []

        for index, batch in enumerate(batches):
            if cancel.cancelled:
                report.status = ImportStatus.CANCELLED
                report.unprocessed_rows = [
                    item.row_number for pending in batches[index:] for item in pending
                ]
                logger.info(
                    "import_cancelled",
                    wholesaler_id=plan.wholesaler_id,
                    mode=plan.mode.value,
                    batches_committed=report.batches_committed,
                    unprocessed=len(report.unprocessed_rows)
                )
                break

            timestamp = self.clock()
            inserts = [i.record.stamped(timestamp) for i in batch if i.action == PlanAction.INSERT]
            updates = [i.record.stamped(timestamp) for i in batch if i.action == PlanAction.UPDATE]

            try:
                self.store.write_batch(plan.wholesaler_id, inserts, updates)
            except ImportBatchError as e:
                logger.error(
                    "import_batch_failed",
                    wholesaler_id=plan.wholesaler_id,
                    mode=plan.mode.value,
                    batch=index + 1,
                    rows=len(batch),
                    error=e.message
                )
                failures.extend(
                    RowFailure(
                        row_number=item.row_number,
                        product_code=item.record.product_code,
                        error=e.message,
                    )
                    for item in batch
                )
            else:
                report.inserted += len(inserts)
                report.updated += len(updates)
                report.batches_committed += 1

            tracker.batch_done(len(batch))

        report.failures = failures
        report.failed = len(failures)

        if report.status == ImportStatus.CANCELLED:
            return
        if failures and report.batches_committed == 0:
            report.status = ImportStatus.FAILED


def _summary(report: ImportReport) -> str:
    if report.status == ImportStatus.FAILED and report.mode == ImportMode.REPLACE:
        return "Import failed; the existing catalog was left unchanged"
    if report.status == ImportStatus.CANCELLED:
        if report.batches_committed and report.mode != ImportMode.REPLACE:
            return (
                f"Import cancelled after {report.batches_committed} batches; "
                f"{report.inserted} inserted and {report.updated} updated rows stay committed, "
                f"{len(report.unprocessed_rows)} rows were not processed"
            )
        return "Import cancelled; no changes were made"

    parts = [f"{report.inserted} inserted"]
    if report.mode == ImportMode.UPDATE:
        parts.append(f"{report.updated} updated")
    parts.append(f"{report.skipped} skipped")
    if report.invalid:
        parts.append(f"{report.invalid} invalid")
    if report.failed:
        parts.append(f"{report.failed} failed")
    if report.deleted:
        parts.append(f"{report.deleted} previous products replaced")
    return "Import " + report.status.value + ": " + ", ".join(parts)
