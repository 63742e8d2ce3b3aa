"""Scheduled jobs run through the ``JobRegistry``."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Dict, List, Optional

from .config import RestoreOperatorConfig
from .contracts import IN_PROGRESS_PHASES, RestoreRequest, WorkflowRecord, utcnow
from .registry import ServiceRegistry
from .store import WorkflowStore

logger = logging.getLogger(__name__)


class BaseJob(metaclass=abc.ABCMeta):
    """A unit of scheduled work."""

    def __init__(
        self,
        services: ServiceRegistry,
        store: WorkflowStore,
        config: RestoreOperatorConfig,
    ) -> None:
        self.services = services
        self.store = store
        self.config = config

    @abc.abstractmethod
    async def run(self, job_data: Optional[Dict[str, Any]] = None) -> Any:
        raise NotImplementedError


class RestoreJob(BaseJob):
    """Starts a restore from a broker request payload."""

    async def run(self, job_data: Optional[Dict[str, Any]] = None) -> WorkflowRecord:
        request = RestoreRequest.model_validate(job_data or {})
        service = self.services.get_service(request.plan_id)
        return await service.start_restore(request)


class OperationStatusPollerJob(BaseJob):
    """Re-drives restores whose record has not changed for ``stall_after`` seconds.

    A lost change notification or a crashed controller leaves a record in an
    in-progress phase with nobody working on it. Re-driving calls
    ``process_phase_change`` with the stored record, so the phase handler
    runs again from the version that is actually persisted.
    """

    async def run(self, job_data: Optional[Dict[str, Any]] = None) -> List[str]:
        stall_after = float(
            (job_data or {}).get("stall_after", self.config.stall_after)
        )
        now = utcnow()
        stalled = [
            record
            for record in await self.store.list_records(IN_PROGRESS_PHASES)
            if (now - record.updated_at).total_seconds() >= stall_after
        ]
        if not stalled:
            logger.debug("No stalled restores found")
            return []

        logger.info(f"Re-driving {len(stalled)} stalled restore(s)")
        outcomes = await asyncio.gather(
            *(self._redrive(record) for record in stalled), return_exceptions=True
        )
        for record, outcome in zip(stalled, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Re-driving restore {record.restore_id} in "
                    f"{record.phase.value} failed: {outcome!r}"
                )
        return [record.restore_id for record in stalled]

    async def _redrive(self, record: WorkflowRecord) -> Optional[WorkflowRecord]:
        logger.info(
            f"Restore {record.restore_id} stalled in {record.phase.value} "
            f"since {record.updated_at.isoformat()}"
        )
        return await self.services.process_phase_change(record)
