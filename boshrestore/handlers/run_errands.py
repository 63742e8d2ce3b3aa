from __future__ import annotations

import logging
from typing import Any, Optional

from ..contracts import Phase, RunErrandsResult, WorkflowRecord
from .base import PhaseHandler

logger = logging.getLogger(__name__)


class RunErrandsHandler(PhaseHandler):
    """Run the post-restore errand on every restored instance."""

    phase = Phase.RUN_ERRANDS
    operation = "run_errand"

    @staticmethod
    def errand_for(record: WorkflowRecord) -> Optional[str]:
        # point-in-time restores replay logs, plain restores only pre-warm
        metadata = record.metadata
        if record.response.time_stamp and metadata.pitr_errand_name:
            return metadata.pitr_errand_name
        return metadata.pre_warming_errand_name

    async def execute(self, record: WorkflowRecord) -> dict[str, Any]:
        metadata = record.metadata
        errand_name = self.errand_for(record)
        if not errand_name:
            logger.info(f"Restore {record.restore_id}: no errand configured, skipping")
            result = RunErrandsResult(skipped=True)
        else:
            instances = [
                {"group": i.job_name, "id": i.instance_id}
                for i in metadata.deployment_instances_info
            ]
            with self._operation(self.operation):
                handle = await self._backend.run_errand(
                    metadata.deployment_name, errand_name, instances
                )
                task_result = await self.wait(handle, self.operation)
            result = RunErrandsResult(
                errand_name=errand_name, task_id=handle.task_id, task_result=task_result
            )
        return {"statesResults": {self.phase.state_key: result.to_document()}}
