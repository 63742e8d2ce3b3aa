from __future__ import annotations

from typing import Any, Optional

from ..contracts import BoshStartResult, Phase, WorkflowRecord, utcnow
from .base import PhaseHandler


class BoshStartHandler(PhaseHandler):
    """Start the deployment again; the last phase before SUCCEEDED."""

    phase = Phase.BOSH_START
    operation = "start_deployment"

    async def execute(self, record: WorkflowRecord) -> dict[str, Any]:
        deployment_name = record.metadata.deployment_name
        with self._operation(self.operation):
            handle = await self._backend.start_deployment(deployment_name)
            result = await self.wait(handle, self.operation)
        return {
            "statesResults": {
                self.phase.state_key: BoshStartResult(
                    task_id=handle.task_id, task_result=result
                ).to_document()
            }
        }

    def success_response(self, record: WorkflowRecord) -> Optional[dict[str, Any]]:
        return {"state": "succeeded", "finished_at": utcnow().isoformat()}
