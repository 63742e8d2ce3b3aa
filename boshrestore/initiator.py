"""Creates the workflow record for a new restore."""

from __future__ import annotations

import logging
from typing import Optional

from .config import PlanConfig
from .contracts import (
    Phase,
    RestoreMetadata,
    RestoreOptions,
    RestoreRequest,
    RestoreResponse,
    WorkflowRecord,
)
from .errors import InvalidRestoreRequest
from .resolver import DeploymentResolver
from .store import WorkflowStore

logger = logging.getLogger(__name__)


class RestoreInitiator:
    """Turns a restore request into a workflow record in its first phase.

    Nothing on the deployment is changed here; the first remote mutation
    happens when the BOSH_STOP handler picks the record up.
    """

    def __init__(
        self,
        store: WorkflowStore,
        resolver: DeploymentResolver,
        plan: Optional[PlanConfig] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._plan = plan

    async def start_restore(self, request: RestoreRequest) -> WorkflowRecord:
        logger.debug(
            f"Starting restore {request.restore_guid} for instance {request.instance_guid}"
        )
        snapshot_id = request.arguments.backup.snapshot_id
        if not snapshot_id:
            raise InvalidRestoreRequest(
                f"Restore {request.restore_guid}: backup carries no snapshotId"
            )

        deployment_name = await self._resolver.resolve_deployment_name(request.instance_guid)
        jobs = self._plan.jobs if self._plan else None
        instances = await self._resolver.get_instance_disks(deployment_name, jobs)
        if not instances:
            raise InvalidRestoreRequest(
                f"Restore {request.restore_guid}: deployment {deployment_name} "
                "has no instances with persistent disks"
            )

        record = WorkflowRecord(
            restore_id=request.restore_guid,
            phase=Phase.BOSH_STOP,
            options=RestoreOptions(
                restore_metadata=RestoreMetadata(
                    snapshot_id=snapshot_id,
                    deployment_name=deployment_name,
                    pre_warming_errand_name=self._plan.pre_warming_errand if self._plan else None,
                    pitr_errand_name=self._plan.pitr_errand if self._plan else None,
                    deployment_instances_info=instances,
                )
            ),
            response=RestoreResponse(
                service_id=request.service_id,
                plan_id=request.plan_id,
                instance_guid=request.instance_guid,
                username=request.username,
                backup_guid=request.arguments.backup_guid,
                time_stamp=request.arguments.time_stamp,
                tenant_id=request.tenant_id(),
            ),
        )
        stored = await self._store.create(record)
        logger.info(
            f"Restore {stored.restore_id} created for deployment {deployment_name} "
            f"with {len(instances)} instance(s)"
        )
        return stored
