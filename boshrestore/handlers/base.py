"""Shared contract of the phase handlers.

A handler reads the part of ``options`` it owns, performs its remote
operations, waits for them, and then moves the record in one patch: to the
next phase with its results on success, or to FAILED with a diagnostic on any
error. It never returns leaving the record in its own phase.
"""

from __future__ import annotations

import abc
import contextlib
import logging
from typing import Any, Iterator, Optional

from ..backend import BoshBackend
from ..config import PollingConfig
from ..constants import DEFAULT_PATCH_ATTEMPTS
from ..contracts import (
    FailureDiagnostic,
    InstanceDiskInfo,
    Phase,
    TaskHandle,
    TaskResult,
    WorkflowRecord,
    utcnow,
)
from ..errors import (
    InvariantViolation,
    MalformedWorkflowRecord,
    RemoteOperationFailed,
    RestoreError,
    VersionConflict,
    WorkflowNotFound,
)
from ..store import WorkflowStore
from ..utils.retry import schedule_retry

logger = logging.getLogger(__name__)


class PhaseHandler(metaclass=abc.ABCMeta):
    """Base class for one phase of the restore workflow."""

    phase: Phase

    def __init__(
        self,
        store: WorkflowStore,
        backend: BoshBackend,
        polling: Optional[PollingConfig] = None,
        patch_attempts: int = DEFAULT_PATCH_ATTEMPTS,
    ) -> None:
        self._store = store
        self._backend = backend
        self._polling = polling or backend.polling
        self._patch_attempts = max(1, patch_attempts)

    @property
    def name(self) -> str:
        return self.phase.short_name

    def should_run(self, record: WorkflowRecord) -> bool:
        """True while the record sits in this phase without a result for it."""
        return (
            record.phase is self.phase
            and record.options.states_results.get(self.phase) is None
        )

    @abc.abstractmethod
    async def execute(self, record: WorkflowRecord) -> dict[str, Any]:
        """Run the remote operations and return the options delta to persist."""
        raise NotImplementedError

    def success_response(self, record: WorkflowRecord) -> Optional[dict[str, Any]]:
        """Response fields to merge when the phase succeeds."""
        return None

    async def handle(self, record: WorkflowRecord) -> Optional[WorkflowRecord]:
        """Run the phase and persist its outcome.

        Returns the updated record, or ``None`` when there was nothing to do
        or another invocation already moved the record on.
        """
        if not self.should_run(record):
            logger.info(
                f"Restore {record.restore_id}: {self.name} not applicable in "
                f"{record.phase.value}; skipping"
            )
            return None

        logger.info(f"Restore {record.restore_id}: running {self.name}")
        try:
            delta = await self.execute(record)
        except RestoreError as e:
            logger.error(f"Restore {record.restore_id}: {self.name} failed: {e}")
            return await self._fail(record, e)
        except Exception as e:
            logger.exception(f"Restore {record.restore_id}: unexpected error in {self.name}")
            return await self._fail(record, e)

        try:
            return await self._commit(
                record, delta, self.phase.next_phase(), self.success_response(record)
            )
        except (MalformedWorkflowRecord, InvariantViolation) as e:
            logger.error(
                f"Restore {record.restore_id}: could not persist {self.name} result: {e}"
            )
            return await self._fail(record, e)

    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def _operation(
        self, operation: str, instance: Optional[InstanceDiskInfo] = None
    ) -> Iterator[None]:
        """Attach phase, operation and instance to errors raised inside."""
        try:
            yield
        except RestoreError as e:
            e.phase = e.phase or self.name
            e.operation = e.operation or operation
            if instance is not None and e.instance is None:
                e.instance = instance.identity()
            raise

    async def wait(
        self,
        handle: TaskHandle,
        operation: str,
        instance: Optional[InstanceDiskInfo] = None,
    ) -> TaskResult:
        """Poll ``handle`` to completion; a failed task raises."""
        result = await self._backend.poll_task(
            handle, timeout=self._polling.timeout_for(operation), operation=operation
        )
        if not result.succeeded:
            target = ""
            if instance is not None:
                target = (
                    f" for {instance.job_name}/{instance.instance_id}"
                    f" in az {instance.availability_zone}"
                )
            raise RemoteOperationFailed(
                f"{operation} task {handle.task_id}{target} failed: {result.message}",
                phase=self.name,
                operation=operation,
                task_id=handle.task_id,
                instance=instance.identity() if instance is not None else None,
            )
        return result

    async def _commit(
        self,
        record: WorkflowRecord,
        options_delta: Optional[dict[str, Any]],
        new_phase: Phase,
        response: Optional[dict[str, Any]] = None,
    ) -> Optional[WorkflowRecord]:
        """Patch with the version we read; on conflict re-read and retry."""
        attempt = 0
        while True:
            try:
                return await self._store.patch(
                    record.restore_id,
                    record.version,
                    options_delta=options_delta,
                    new_phase=new_phase,
                    response=response,
                )
            except VersionConflict:
                attempt += 1
                current = await self._store.get(record.restore_id)
                if current is None:
                    raise WorkflowNotFound(f"Restore {record.restore_id} disappeared")
                if current.phase is not self.phase:
                    logger.info(
                        f"Restore {record.restore_id}: already moved to "
                        f"{current.phase.value}; dropping {self.name} outcome"
                    )
                    return None
                if attempt >= self._patch_attempts:
                    logger.error(
                        f"Restore {record.restore_id}: giving up on {self.name} patch "
                        f"after {attempt} version conflicts"
                    )
                    # record stays in its phase; OperationStatusPollerJob re-drives it
                    raise
                logger.warning(
                    f"Restore {record.restore_id}: version conflict on {self.name}, "
                    f"retrying ({attempt}/{self._patch_attempts})"
                )
                record = current
                await schedule_retry(attempt - 1, base=0.05, cap=1.0, jitter=0.05)

    async def _fail(
        self, record: WorkflowRecord, error: BaseException
    ) -> Optional[WorkflowRecord]:
        diagnostic = FailureDiagnostic.from_error(self.phase, error)
        response = {
            "state": "failed",
            "finished_at": utcnow().isoformat(),
            "error": diagnostic.model_dump(mode="json", exclude_none=True),
        }
        return await self._commit(record, None, Phase.FAILED, response)
