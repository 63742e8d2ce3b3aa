"""Restore service bound to one service plan."""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from .backend import BoshBackend
from .config import PlanConfig, PollingConfig
from .constants import DEFAULT_PATCH_ATTEMPTS
from .contracts import RestoreRequest, WorkflowRecord
from .dispatch import PhaseDispatcher
from .errors import InvalidRestoreRequest, WorkflowNotFound
from .handlers import build_handlers
from .initiator import RestoreInitiator
from .resolver import DeploymentResolver
from .store import WorkflowStore

logger = logging.getLogger(__name__)


class BoshRestoreService:
    """Starts restores for a plan and drives their phases."""

    def __init__(
        self,
        plan: PlanConfig,
        store: WorkflowStore,
        backend: BoshBackend,
        polling: Optional[PollingConfig] = None,
        patch_attempts: int = DEFAULT_PATCH_ATTEMPTS,
    ) -> None:
        self.plan = plan
        self.store = store
        self.backend = backend
        self.resolver = DeploymentResolver(backend)
        self.initiator = RestoreInitiator(store, self.resolver, plan)
        self.dispatcher = PhaseDispatcher(
            store, build_handlers(store, backend, polling, patch_attempts)
        )

    async def start_restore(self, request: RestoreRequest) -> WorkflowRecord:
        if request.plan_id != self.plan.id:
            raise InvalidRestoreRequest(
                f"Restore {request.restore_guid} targets plan {request.plan_id}, "
                f"service is bound to {self.plan.id}"
            )
        return await self.initiator.start_restore(request)

    async def process_phase_change(
        self, record: Union[WorkflowRecord, dict[str, Any]]
    ) -> Optional[WorkflowRecord]:
        return await self.dispatcher.process_phase_change(record)

    async def get_restore(self, restore_id: str) -> WorkflowRecord:
        record = await self.store.get(restore_id)
        if record is None:
            raise WorkflowNotFound(f"Restore {restore_id} not found")
        return record
