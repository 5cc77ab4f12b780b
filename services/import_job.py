"""
Import job state machine.

    IDLE -> VALIDATING -> VALIDATED -> IMPORTING -> COMPLETED | FAILED | CANCELLED

VALIDATED may go back to VALIDATING (re-validation). A parse failure while
VALIDATING returns the job to IDLE. IMPORTING is entered only from VALIDATED
and only while holding the wholesaler's import lock; the lock is released on
every way out of IMPORTING.
"""

import asyncio
import threading
from enum import Enum
from typing import AsyncIterator, Callable, Optional, Union
from uuid import uuid4

import structlog

from exceptions import InvalidJobStateError
from models.catalog import (
    ImportMode,
    ImportPlan,
    ImportProgress,
    ImportReport,
    ImportStatus,
    RowOutcome,
    ValidationReport,
)
from services.import_executor import (
    CancellationToken,
    ImportExecutor,
    ImportLease,
    ProgressCallback,
    ProgressChannel,
)
from services.reconciliation import build_import_plan

logger = structlog.get_logger(__name__)


class ImportJobState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    VALIDATED = "validated"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: dict[ImportJobState, frozenset[ImportJobState]] = {
    ImportJobState.IDLE: frozenset({ImportJobState.VALIDATING}),
    ImportJobState.VALIDATING: frozenset({ImportJobState.VALIDATED, ImportJobState.IDLE}),
    ImportJobState.VALIDATED: frozenset({ImportJobState.VALIDATING, ImportJobState.IMPORTING}),
    ImportJobState.IMPORTING: frozenset({
        ImportJobState.COMPLETED,
        ImportJobState.FAILED,
        ImportJobState.CANCELLED,
    }),
    ImportJobState.COMPLETED: frozenset(),
    ImportJobState.FAILED: frozenset(),
    ImportJobState.CANCELLED: frozenset(),
}

_FINAL_STATE = {
    ImportStatus.COMPLETED: ImportJobState.COMPLETED,
    ImportStatus.FAILED: ImportJobState.FAILED,
    ImportStatus.CANCELLED: ImportJobState.CANCELLED,
}

# (content, wholesaler_id, filename) -> (report, reconciled outcomes)
Evaluator = Callable[[bytes, str, Optional[str]], tuple[ValidationReport, list[RowOutcome]]]

ImportEvent = Union[ImportProgress, ImportReport]


class ImportJob:
    """
    One validate -> import round trip for one uploaded file.

    The job owns its CancellationToken; run() executes synchronously,
    launch() runs it in a worker thread and events() streams its progress.
    """

    def __init__(
        self,
        wholesaler_id: str,
        content: bytes,
        *,
        evaluator: Evaluator,
        executor: ImportExecutor,
        filename: Optional[str] = None,
        on_finished: Optional[Callable[["ImportJob"], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.id = str(uuid4())
        self.wholesaler_id = wholesaler_id
        self.filename = filename
        self.state = ImportJobState.IDLE
        self.validation: Optional[ValidationReport] = None
        self.plan: Optional[ImportPlan] = None
        self.result: Optional[ImportReport] = None
        self.error: Optional[BaseException] = None
        self.cancel_token = cancel_token or CancellationToken()

        self._content = content
        self._evaluator = evaluator
        self._executor = executor
        self._on_finished = on_finished
        self._outcomes: list[RowOutcome] = []
        self._lease: Optional[ImportLease] = None
        self._state_lock = threading.Lock()
        self._channel: Optional[ProgressChannel] = None
        self._task: Optional[asyncio.Future] = None

    @property
    def mode(self) -> Optional[ImportMode]:
        return self.plan.mode if self.plan else None

    @property
    def finished(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]

    def _transition(self, target: ImportJobState) -> None:
        with self._state_lock:
            if target not in ALLOWED_TRANSITIONS[self.state]:
                raise InvalidJobStateError(self.state.value, target.value)
            logger.debug(
                "import_job_transition",
                job_id=self.id,
                wholesaler_id=self.wholesaler_id,
                from_state=self.state.value,
                to_state=target.value
            )
            self.state = target

    # ===================
    # VALIDATION
    # ===================

    def validate(self) -> ValidationReport:
        """
        Parse, validate and reconcile the file.

        Raises:
            CatalogParseError: File unreadable; the job returns to IDLE
            InvalidJobStateError: Job is importing or finished
        """
        self._transition(ImportJobState.VALIDATING)
        try:
            self.validation, self._outcomes = self._evaluator(
                self._content, self.wholesaler_id, self.filename
            )
        except Exception:
            self._transition(ImportJobState.IDLE)
            raise
        self._transition(ImportJobState.VALIDATED)
        return self.validation

    # ===================
    # IMPORT
    # ===================

    def start(self, mode: ImportMode, lease: Optional[ImportLease] = None) -> ImportPlan:
        """
        Enter IMPORTING: take the wholesaler lock and build the plan.

        Raises:
            InvalidJobStateError: Job is not VALIDATED
            ImportInProgressError: Another import holds the lock; the job
                stays VALIDATED
        """
        if self.state != ImportJobState.VALIDATED:
            raise InvalidJobStateError(self.state.value, ImportJobState.IMPORTING.value)

        if lease is None:
            lease = self._executor.locks.acquire(self.wholesaler_id)
        self._lease = lease

        try:
            self.plan = build_import_plan(self.wholesaler_id, mode, self._outcomes)
            self._transition(ImportJobState.IMPORTING)
        except Exception:
            self._release()
            raise

        logger.info(
            "import_job_started",
            job_id=self.id,
            wholesaler_id=self.wholesaler_id,
            mode=mode.value,
            rows=len(self.plan.items)
        )
        return self.plan

    def run(self, progress: Optional[ProgressCallback] = None) -> ImportReport:
        """Execute the plan in the calling thread."""
        if self.state != ImportJobState.IMPORTING or self.plan is None:
            raise InvalidJobStateError(self.state.value, ImportJobState.IMPORTING.value)

        try:
            result = self._executor.execute(
                self.plan,
                lease=self._lease,
                progress=progress,
                cancel=self.cancel_token,
            )
            self.result = result
            self._transition(_FINAL_STATE[result.status])
            return result
        except Exception as e:
            logger.error("import_job_crashed", job_id=self.id, error=str(e))
            if self.state == ImportJobState.IMPORTING:
                self._transition(ImportJobState.FAILED)
            raise
        finally:
            self._release()

    def launch(self) -> None:
        """
        Start run() in a worker thread on the running event loop.

        The worker runs to the end and releases the lock whether or not
        events() is ever consumed.
        """
        if self._task is not None or self.state != ImportJobState.IMPORTING:
            raise InvalidJobStateError(self.state.value, ImportJobState.IMPORTING.value)

        channel = ProgressChannel()

        def work() -> ImportReport:
            try:
                return self.run(progress=channel.publish)
            finally:
                channel.close()

        self._channel = channel
        self._task = asyncio.ensure_future(asyncio.to_thread(work))
        self._task.add_done_callback(self._collect_worker)

    def _collect_worker(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        self.error = task.exception()
        if self.error is not None:
            logger.warning(
                "import_worker_failed",
                job_id=self.id,
                error=str(self.error),
                type=type(self.error).__name__
            )

    async def events(self) -> AsyncIterator[ImportEvent]:
        """
        Yield progress then the report of the worker, launching it if needed.

        Closing the iterator early requests cancellation; the worker stops
        at the next batch boundary.
        """
        if self._task is None:
            self.launch()
        try:
            async for progress in self._channel:
                yield progress
            yield await self._task
        finally:
            if not self._task.done():
                logger.warning("import_stream_closed_early", job_id=self.id)
                self.cancel_token.cancel()

    def cancel(self) -> None:
        """
        Request cancellation of a running import.

        Raises:
            InvalidJobStateError: Job is not IMPORTING
        """
        with self._state_lock:
            if self.state != ImportJobState.IMPORTING:
                raise InvalidJobStateError(self.state.value, ImportJobState.CANCELLED.value)
        self.cancel_token.cancel()
        logger.info("import_cancel_requested", job_id=self.id, wholesaler_id=self.wholesaler_id)

    def _release(self) -> None:
        if self._lease is not None:
            self._lease.release()
        if self._on_finished is not None:
            self._on_finished(self)
