from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..contracts import (
    AttachDiskResult,
    InstanceDiskInfo,
    Phase,
    TaskHandle,
    TaskResult,
    WorkflowRecord,
)
from ..errors import InvariantViolation
from .base import PhaseHandler

logger = logging.getLogger(__name__)


class AttachDiskHandler(PhaseHandler):
    """Attach each new disk to its instance; every attach task must succeed."""

    phase = Phase.ATTACH_DISK
    operation = "attach_disk"

    async def execute(self, record: WorkflowRecord) -> dict[str, Any]:
        metadata = record.metadata
        instances = metadata.deployment_instances_info
        outcomes = await asyncio.gather(
            *(self._attach(metadata.deployment_name, i) for i in instances),
            return_exceptions=True,
        )
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures:
            for failure in failures[1:]:
                logger.error(f"Restore {record.restore_id}: additional attach failure: {failure}")
            raise failures[0]

        attached: list[tuple[TaskHandle, TaskResult]] = list(outcomes)
        return {
            "restoreMetadata": {
                "deploymentInstancesInfo": [
                    {"attachTaskId": handle.task_id, "attachTaskResult": result.to_document()}
                    for handle, result in attached
                ]
            },
            "statesResults": {
                self.phase.state_key: AttachDiskResult(
                    task_ids=[handle.task_id for handle, _ in attached]
                ).to_document()
            },
        }

    async def _attach(
        self, deployment_name: str, instance: InstanceDiskInfo
    ) -> tuple[TaskHandle, TaskResult]:
        if instance.new_disk_info is None:
            raise InvariantViolation(
                f"{instance.job_name}/{instance.instance_id} has no new disk to attach",
                operation=self.operation,
                instance=instance.identity(),
            )
        with self._operation(self.operation, instance):
            handle = await self._backend.attach_disk(
                deployment_name,
                instance.new_disk_info.volume_id,
                instance.job_name,
                instance.instance_id,
            )
            result = await self.wait(handle, self.operation, instance)
        return handle, result
