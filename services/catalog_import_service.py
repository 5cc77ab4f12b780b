"""
Catalog import service.

Entry point for everything the API and scripts do with wholesaler catalogs:
validate an upload, import it under a mode (synchronously or as a streamed
job), cancel a running import, generate template/example/export files,
clear a catalog and compute catalog stats.
"""

import asyncio
import threading
from datetime import datetime
from itertools import islice
from typing import Callable, Iterable, Iterator, Optional, Union

import structlog

from config import settings
from exceptions import InvalidJobStateError
from models.catalog import (
    CatalogStats,
    ImportMode,
    ImportReport,
    ProductRecord,
    RowErrorSummary,
    RowOutcome,
    RowPreview,
    RowStatus,
    RowWarning,
    ValidationReport,
)
from parsers.catalog_parser import ParsedRow, parse_catalog
from services import catalog_files
from services.catalog_stats import StatsAccumulator, compute_catalog_stats
from services.catalog_store import CatalogStore, get_catalog_store
from services.catalog_validation import RowValidation, validate_row
from services.import_executor import (
    CancellationToken,
    ImportExecutor,
    ProgressCallback,
    WholesalerLocks,
)
from services.import_job import ImportJob
from services.reconciliation import Reconciler

logger = structlog.get_logger(__name__)

# Rows validated between two existing-catalog lookups
LOOKUP_CHUNK_SIZE = 500


def _chunked(rows: Iterable[ParsedRow], size: int) -> Iterator[list[ParsedRow]]:
    iterator = iter(rows)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


class _ReportBuilder:
    """Accumulates a ValidationReport one reconciled row at a time."""

    def __init__(self, wholesaler_id: str, preview_limit: int, invalid_preview_limit: int):
        self.wholesaler_id = wholesaler_id
        self.preview_limit = preview_limit
        self.invalid_preview_limit = invalid_preview_limit

        self.counts = {status: 0 for status in RowStatus}
        self.warnings: list[RowWarning] = []
        self.errors: list[RowErrorSummary] = []
        self.preview: list[RowPreview] = []
        self.stats = StatsAccumulator()
        self._valid_previewed = 0
        self._invalid_previewed = 0

    def add(self, outcome: RowOutcome, warnings: list[RowWarning]) -> None:
        self.counts[outcome.status] += 1
        self.warnings.extend(warnings)

        if outcome.is_invalid:
            self.errors.append(RowErrorSummary(
                row_number=outcome.row_number,
                product_code=outcome.product_code,
                errors=outcome.field_errors,
            ))
            if self._invalid_previewed < self.invalid_preview_limit:
                self._invalid_previewed += 1
                self.preview.append(self._preview(outcome))
            return

        self.stats.add(outcome.record)
        if self._valid_previewed < self.preview_limit:
            self._valid_previewed += 1
            self.preview.append(self._preview(outcome))

    @staticmethod
    def _preview(outcome: RowOutcome) -> RowPreview:
        record = outcome.record
        return RowPreview(
            row_number=outcome.row_number,
            status=outcome.status,
            product_code=outcome.product_code,
            product_name=record.product_name if record else None,
            category=record.category.value if record else None,
            wholesale_price=record.wholesale_price if record else None,
            suggested_retail=record.suggested_retail if record else None,
            changed_fields=outcome.changed_fields,
        )

    def build(self, ignored_columns: list[str]) -> ValidationReport:
        invalid = self.counts[RowStatus.INVALID]
        new = self.counts[RowStatus.NEW]
        duplicates = self.counts[RowStatus.DUPLICATE]
        updates = self.counts[RowStatus.UPDATE]

        return ValidationReport(
            wholesaler_id=self.wholesaler_id,
            total_rows=sum(self.counts.values()),
            valid=new + duplicates + updates,
            invalid=invalid,
            new=new,
            duplicates=duplicates,
            updates=updates,
            warnings=self.warnings,
            errors=self.errors,
            preview=self.preview,
            ignored_columns=ignored_columns,
            stats=self.stats.result(),
        )


class CatalogImportService:
    """
    Wholesale catalog import and reconciliation.

    Every mutating operation goes through the per-wholesaler import lock.
    """

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        *,
        locks: Optional[WholesalerLocks] = None,
        batch_size: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        preview_limit: Optional[int] = None,
        invalid_preview_limit: Optional[int] = None,
    ):
        self.store = store or get_catalog_store()
        self.locks = locks or WholesalerLocks()
        self.executor = ImportExecutor(
            self.store,
            self.locks,
            batch_size=batch_size or settings.import_batch_size,
            clock=clock,
        )
        self.preview_limit = (
            settings.catalog_preview_limit if preview_limit is None else preview_limit
        )
        self.invalid_preview_limit = (
            settings.catalog_invalid_preview_limit
            if invalid_preview_limit is None else invalid_preview_limit
        )
        self._active_jobs: dict[str, ImportJob] = {}
        self._jobs_lock = threading.Lock()

    # ===================
    # VALIDATION
    # ===================

    def _evaluate(
        self,
        content: bytes,
        wholesaler_id: str,
        filename: Optional[str] = None,
        keep_outcomes: bool = True,
    ) -> tuple[ValidationReport, list[RowOutcome]]:
        """
        Parse, validate and reconcile one file in a single streamed pass.

        The existing catalog is looked up chunk by chunk for the codes the
        file actually contains.
        """
        catalog = parse_catalog(content, filename)

        existing: dict[str, ProductRecord] = {}
        reconciler = Reconciler(existing)
        builder = _ReportBuilder(wholesaler_id, self.preview_limit, self.invalid_preview_limit)
        outcomes: list[RowOutcome] = []

        for chunk in _chunked(catalog, LOOKUP_CHUNK_SIZE):
            checked: list[RowValidation] = [validate_row(row) for row in chunk]
            codes = [
                c.outcome.product_code for c in checked
                if c.outcome.status == RowStatus.VALID and c.outcome.product_code not in existing
            ]
            if codes:
                existing.update(self.store.get_products_by_code(wholesaler_id, codes))

            for validation in checked:
                outcome = reconciler.reconcile(validation.outcome)
                builder.add(outcome, validation.warnings)
                if keep_outcomes:
                    outcomes.append(outcome)

        return builder.build(catalog.ignored_columns), outcomes

    def validate(
        self,
        content: bytes,
        wholesaler_id: str,
        filename: Optional[str] = None,
    ) -> ValidationReport:
        """
        Validate an uploaded catalog against the wholesaler's current catalog.

        Never touches stored data.

        Raises:
            CatalogParseError: If the file is not a readable catalog
        """
        report, _ = self._evaluate(content, wholesaler_id, filename, keep_outcomes=False)

        logger.info(
            "catalog_validated",
            wholesaler_id=wholesaler_id,
            filename=filename,
            total_rows=report.total_rows,
            valid=report.valid,
            invalid=report.invalid,
            new=report.new,
            duplicates=report.duplicates,
            updates=report.updates,
            warnings=len(report.warnings)
        )
        return report

    # ===================
    # IMPORT
    # ===================

    def _prepare_job(
        self,
        content: bytes,
        wholesaler_id: str,
        mode: Union[ImportMode, str],
        filename: Optional[str],
        cancel: Optional[CancellationToken] = None,
    ) -> ImportJob:
        mode = ImportMode(mode)

        # Reject a concurrent import before spending time on the file
        lease = self.locks.acquire(wholesaler_id)

        job = ImportJob(
            wholesaler_id,
            content,
            evaluator=self._evaluate,
            executor=self.executor,
            filename=filename,
            on_finished=self._forget_job,
            cancel_token=cancel,
        )
        try:
            job.validate()
        except Exception:
            lease.release()
            raise

        job.start(mode, lease=lease)
        with self._jobs_lock:
            self._active_jobs[wholesaler_id] = job
        return job

    def _forget_job(self, job: ImportJob) -> None:
        with self._jobs_lock:
            if self._active_jobs.get(job.wholesaler_id) is job:
                del self._active_jobs[job.wholesaler_id]

    def run_import(
        self,
        content: bytes,
        wholesaler_id: str,
        mode: Union[ImportMode, str],
        filename: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ImportReport:
        """
        Validate and import a catalog file in the calling thread.

        Args:
            content: Raw file bytes
            wholesaler_id: Catalog owner
            mode: replace, append or update
            filename: Original filename (csv vs xlsx)
            progress: Non-blocking progress callback
            cancel: Token checked between batches

        Returns:
            ImportReport

        Raises:
            CatalogParseError: File unreadable, nothing imported
            ImportInProgressError: Another import is running for the wholesaler
        """
        job = self._prepare_job(content, wholesaler_id, mode, filename, cancel)
        return job.run(progress)

    def start_import(
        self,
        content: bytes,
        wholesaler_id: str,
        mode: Union[ImportMode, str],
        filename: Optional[str] = None,
    ) -> ImportJob:
        """
        Validate a file and hand back a job in IMPORTING, ready to stream.

        The wholesaler lock is already held when this returns; call
        job.run() or job.launch() to execute and release it.
        """
        job = self._prepare_job(content, wholesaler_id, mode, filename)
        logger.info(
            "catalog_import_queued",
            job_id=job.id,
            wholesaler_id=wholesaler_id,
            mode=job.mode.value,
            rows=job.validation.total_rows
        )
        return job

    def launch_import(
        self,
        content: bytes,
        wholesaler_id: str,
        mode: Union[ImportMode, str],
        filename: Optional[str] = None,
    ) -> ImportJob:
        """
        Validate a file and start importing it in a worker thread.

        Must be called from the event loop. The import runs to the end (or
        to a cancel) whether or not anyone reads job.events().

        Raises:
            CatalogParseError: File unreadable, nothing imported
            ImportInProgressError: Another import is running for the wholesaler
        """
        # Fail outside a loop before the lock is taken
        asyncio.get_running_loop()
        job = self.start_import(content, wholesaler_id, mode, filename)
        job.launch()
        return job

    def cancel_import(self, wholesaler_id: str) -> bool:
        """Request cancellation of the running import. False when none runs."""
        with self._jobs_lock:
            job = self._active_jobs.get(wholesaler_id)
        if job is None:
            return False
        try:
            job.cancel()
        except InvalidJobStateError:
            return False
        return True

    def active_job(self, wholesaler_id: str) -> Optional[ImportJob]:
        with self._jobs_lock:
            return self._active_jobs.get(wholesaler_id)

    # ===================
    # FILES
    # ===================

    def template(self, fmt: str = "csv") -> bytes:
        return catalog_files.template(fmt)

    def example(self, fmt: str = "csv") -> bytes:
        return catalog_files.example(fmt)

    def export(self, wholesaler_id: str, fmt: str = "csv") -> bytes:
        """Current catalog in the import schema."""
        return catalog_files.export(self.store.list_products(wholesaler_id), fmt)

    # ===================
    # CATALOG
    # ===================

    def clear_catalog(self, wholesaler_id: str) -> int:
        """
        Delete every product of a wholesaler.

        Raises:
            ImportInProgressError: If an import is running for the wholesaler
        """
        with self.locks.acquire(wholesaler_id):
            deleted = self.store.delete_catalog(wholesaler_id)

        logger.info("catalog_cleared", wholesaler_id=wholesaler_id, deleted=deleted)
        return deleted

    def stats(self, wholesaler_id: str) -> CatalogStats:
        return compute_catalog_stats(self.store.list_products(wholesaler_id))


# Singleton instance for convenience
_catalog_import_service: Optional[CatalogImportService] = None


def get_catalog_import_service() -> CatalogImportService:
    """Get or create CatalogImportService instance."""
    global _catalog_import_service
    if _catalog_import_service is None:
        _catalog_import_service = CatalogImportService()
    return _catalog_import_service
