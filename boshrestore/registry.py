"""Registries for restore services and scheduled jobs.

Both are plain objects created once at process start and passed to whoever
needs them; lookups are lock-free once an entry exists.
"""

from __future__ import annotations

import importlib
import threading
from typing import Any, Dict, List, Mapping, Optional, Union

from .backend import BoshBackend
from .config import RestoreOperatorConfig
from .constants import JOB_OPERATION_STATUS_POLLER, JOB_RESTORE
from .contracts import WorkflowRecord
from .errors import PlanNotFound, UnknownJobType
from .service import BoshRestoreService
from .store import WorkflowStore


class ServiceRegistry:
    """Plan id to ``BoshRestoreService``, constructed on first use."""

    def __init__(
        self,
        config: RestoreOperatorConfig,
        store: WorkflowStore,
        backend: BoshBackend,
    ) -> None:
        self._config = config
        self._store = store
        self._backend = backend
        self._services: Dict[str, BoshRestoreService] = {}
        self._lock = threading.Lock()

    def get_service(self, plan_id: str) -> BoshRestoreService:
        service = self._services.get(plan_id)
        if service is not None:
            return service
        with self._lock:
            service = self._services.get(plan_id)
            if service is None:
                plan = self._config.get_plan(plan_id)
                if plan is None:
                    raise PlanNotFound(f"Plan {plan_id} is not configured")
                service = BoshRestoreService(
                    plan,
                    self._store,
                    self._backend,
                    polling=self._config.polling,
                    patch_attempts=self._config.patch_attempts,
                )
                self._services[plan_id] = service
        return service

    def get_service_for(
        self, record: Union[WorkflowRecord, Dict[str, Any]]
    ) -> BoshRestoreService:
        if isinstance(record, WorkflowRecord):
            return self.get_service(record.plan_id)
        plan_id = (record.get("response") or {}).get("plan_id")
        if not plan_id:
            raise PlanNotFound(f"Restore {record.get('restoreId')!r} carries no plan id")
        return self.get_service(plan_id)

    async def process_phase_change(
        self, record: Union[WorkflowRecord, Dict[str, Any]]
    ) -> Optional[WorkflowRecord]:
        return await self.get_service_for(record).process_phase_change(record)


DEFAULT_JOBS: Mapping[str, str] = {
    JOB_RESTORE: "boshrestore.jobs:RestoreJob",
    JOB_OPERATION_STATUS_POLLER: "boshrestore.jobs:OperationStatusPollerJob",
}


class JobRegistry:
    """Job type token to job class, imported lazily on first lookup."""

    def __init__(self, jobs: Optional[Mapping[str, Union[str, type]]] = None) -> None:
        self._targets: Dict[str, Union[str, type]] = dict(
            DEFAULT_JOBS if jobs is None else jobs
        )
        self._jobs: Dict[str, type] = {}
        self._lock = threading.Lock()

    def register(self, job_type: str, target: Union[str, type]) -> None:
        """Register a job class or a ``module:attribute`` import path."""
        with self._lock:
            self._targets[job_type] = target
            self._jobs.pop(job_type, None)

    def get_job(self, job_type: str) -> type:
        job = self._jobs.get(job_type)
        if job is not None:
            return job
        with self._lock:
            job = self._jobs.get(job_type)
            if job is None:
                target = self._targets.get(job_type)
                if target is None:
                    raise UnknownJobType(
                        f"Invalid job type. {job_type} does not exist; "
                        f"known types: {sorted(self._targets)}"
                    )
                if isinstance(target, str):
                    module_name, _, attribute = target.partition(":")
                    job = getattr(importlib.import_module(module_name), attribute)
                else:
                    job = target
                self._jobs[job_type] = job
        return job

    def job_types(self) -> List[str]:
        return sorted(self._targets)
