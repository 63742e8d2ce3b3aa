from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..contracts import (
    CreateDiskResult,
    InstanceDiskInfo,
    NewDiskInfo,
    Phase,
    WorkflowRecord,
)
from .base import PhaseHandler

logger = logging.getLogger(__name__)


class CreateDiskHandler(PhaseHandler):
    """Create one disk per instance from the backup snapshot.

    Disks are created concurrently and joined; the phase only advances when
    every disk exists, otherwise no disk is recorded at all.
    """

    phase = Phase.CREATE_DISK
    operation = "create_disk"

    async def execute(self, record: WorkflowRecord) -> dict[str, Any]:
        metadata = record.metadata
        instances = metadata.deployment_instances_info
        outcomes = await asyncio.gather(
            *(self._create_disk(metadata.snapshot_id, i) for i in instances),
            return_exceptions=True,
        )
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures:
            for failure in failures[1:]:
                logger.error(f"Restore {record.restore_id}: additional disk failure: {failure}")
            raise failures[0]

        disks: list[NewDiskInfo] = list(outcomes)
        return {
            "restoreMetadata": {
                "deploymentInstancesInfo": [
                    {"newDiskInfo": disk.to_document()} for disk in disks
                ]
            },
            "statesResults": {
                self.phase.state_key: CreateDiskResult(disks=disks).to_document()
            },
        }

    async def _create_disk(
        self, snapshot_id: str, instance: InstanceDiskInfo
    ) -> NewDiskInfo:
        with self._operation(self.operation, instance):
            handle = await self._backend.create_disk_from_snapshot(
                snapshot_id, instance.availability_zone
            )
            result = await self.wait(handle, self.operation, instance)
        logger.info(
            f"Disk {handle.task_id} ready for {instance.job_name}/{instance.instance_id}"
        )
        return NewDiskInfo(
            volume_id=result.payload.get("volumeId") or handle.task_id,
            availability_zone=result.payload.get("availabilityZone")
            or instance.availability_zone,
            task_id=handle.task_id,
        )
