from __future__ import annotations

from typing import Any

from ..contracts import BoshStopResult, Phase, WorkflowRecord
from .base import PhaseHandler


class BoshStopHandler(PhaseHandler):
    """Stop every instance of the deployment before its disks are swapped."""

    phase = Phase.BOSH_STOP
    operation = "stop_deployment"

    async def execute(self, record: WorkflowRecord) -> dict[str, Any]:
        deployment_name = record.metadata.deployment_name
        with self._operation(self.operation):
            handle = await self._backend.stop_deployment(deployment_name)
            result = await self.wait(handle, self.operation)
        return {
            "statesResults": {
                self.phase.state_key: BoshStopResult(
                    task_id=handle.task_id, task_result=result
                ).to_document()
            }
        }
