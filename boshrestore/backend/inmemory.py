"""In-process stand-in for a BOSH director and its cloud provider."""

from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import PollingConfig
from ..contracts import InstanceDiskInfo, TaskHandle, TaskResult, TaskState
from ..errors import RemoteOperationFailed
from .base import BoshBackend


@dataclass
class FakeTask:
    task_id: str
    operation: str
    outcome: TaskState
    message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    polls_left: int = 0
    hang: bool = False
    on_success: Optional[Callable[[], None]] = None
    applied: bool = False


class InMemoryBoshBackend(BoshBackend):
    """Fake orchestrator for tests and local demos.

    ``deployments`` maps deployment names to instance dicts shaped like the
    director's instance listing (``job``, ``id``, ``az``, ``disk_cid``).
    Every call is appended to ``calls``. ``fail_on``, ``hang_on`` and
    ``raise_on`` inject failures for operations whose parameters match.
    """

    def __init__(
        self,
        deployments: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        queued_deployments: Optional[List[str]] = None,
        task_latency: int = 0,
        polling: Optional[PollingConfig] = None,
    ) -> None:
        super().__init__(polling or PollingConfig(interval=0.01, max_interval=0.05))
        self.deployments = deployments or {}
        self.queued_deployments = list(queued_deployments or [])
        self.task_latency = task_latency
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.deployment_states: Dict[str, str] = {}
        self.disks: Dict[str, Dict[str, Any]] = {}
        self.attachments: List[Dict[str, Any]] = []
        self.errand_runs: List[Dict[str, Any]] = []
        self._tasks: Dict[str, FakeTask] = {}
        self._rules: List[Tuple[str, Dict[str, Any], str, str]] = []
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Failure injection
    def fail_on(self, operation: str, message: str = "task failed", **match: Any) -> None:
        self._rules.append((operation, match, "fail", message))

    def hang_on(self, operation: str, **match: Any) -> None:
        self._rules.append((operation, match, "hang", ""))

    def raise_on(self, operation: str, message: str = "request rejected", **match: Any) -> None:
        self._rules.append((operation, match, "raise", message))

    def calls_for(self, operation: str) -> List[Dict[str, Any]]:
        return [params for name, params in self.calls if name == operation]

    def _effect(self, operation: str, params: Dict[str, Any]) -> Tuple[Optional[str], str]:
        for name, match, effect, message in self._rules:
            if name == operation and all(params.get(k) == v for k, v in match.items()):
                return effect, message
        return None, ""

    def _submit(
        self,
        operation: str,
        params: Dict[str, Any],
        kind: str = "director",
        payload: Optional[Dict[str, Any]] = None,
        on_success: Optional[Callable[[], None]] = None,
    ) -> TaskHandle:
        self.calls.append((operation, params))
        effect, message = self._effect(operation, params)
        if effect == "raise":
            raise RemoteOperationFailed(f"{operation}: {message}", operation=operation)
        task_id = str(next(self._ids))
        self._tasks[task_id] = FakeTask(
            task_id=task_id,
            operation=operation,
            outcome=TaskState.FAILED if effect == "fail" else TaskState.SUCCEEDED,
            message=message if effect == "fail" else "done",
            payload=payload or {},
            polls_left=self.task_latency,
            hang=effect == "hang",
            on_success=on_success,
        )
        return TaskHandle(task_id=task_id, kind=kind)

    # ------------------------------------------------------------------
    async def stop_deployment(self, deployment_name: str) -> TaskHandle:
        return self._submit(
            "stop_deployment",
            {"deployment_name": deployment_name},
            on_success=lambda: self.deployment_states.__setitem__(deployment_name, "stopped"),
        )

    async def start_deployment(self, deployment_name: str) -> TaskHandle:
        return self._submit(
            "start_deployment",
            {"deployment_name": deployment_name},
            on_success=lambda: self.deployment_states.__setitem__(deployment_name, "started"),
        )

    async def create_disk_from_snapshot(
        self, snapshot_id: str, availability_zone: Optional[str]
    ) -> TaskHandle:
        volume_id = f"vol-{uuid.uuid4().hex[:12]}"
        disk = {
            "volumeId": volume_id,
            "availabilityZone": availability_zone,
            "snapshotId": snapshot_id,
        }
        return self._submit(
            "create_disk",
            {"snapshot_id": snapshot_id, "availability_zone": availability_zone},
            kind="disk",
            payload=disk,
            on_success=lambda: self.disks.__setitem__(volume_id, disk),
        )

    async def attach_disk(
        self, deployment_name: str, volume_id: str, job_name: str, instance_id: str
    ) -> TaskHandle:
        attachment = {
            "deployment_name": deployment_name,
            "volume_id": volume_id,
            "job_name": job_name,
            "instance_id": instance_id,
        }
        return self._submit(
            "attach_disk",
            dict(attachment),
            on_success=lambda: self.attachments.append(attachment),
        )

    async def run_errand(
        self, deployment_name: str, errand_name: str, instances: List[Dict[str, str]]
    ) -> TaskHandle:
        run = {
            "deployment_name": deployment_name,
            "errand_name": errand_name,
            "instances": instances,
        }
        return self._submit(
            "run_errand", dict(run), on_success=lambda: self.errand_runs.append(run)
        )

    async def get_task(self, handle: TaskHandle) -> TaskResult:
        task = self._tasks.get(handle.task_id)
        if task is None:
            raise RemoteOperationFailed(f"Unknown task {handle.task_id}", task_id=handle.task_id)
        if task.hang:
            return TaskResult(task_id=task.task_id, state=TaskState.PROCESSING)
        if task.polls_left > 0:
            task.polls_left -= 1
            return TaskResult(task_id=task.task_id, state=TaskState.PROCESSING)
        if task.outcome is TaskState.SUCCEEDED and not task.applied:
            if task.on_success is not None:
                task.on_success()
            task.applied = True
        return TaskResult(
            task_id=task.task_id,
            state=task.outcome,
            message=task.message,
            payload=dict(task.payload),
        )

    async def get_deployment_names(self, include_queued: bool = False) -> List[str]:
        self.calls.append(("get_deployment_names", {"include_queued": include_queued}))
        names = list(self.deployments)
        if include_queued:
            names.extend(n for n in self.queued_deployments if n not in names)
        return names

    async def get_persistent_disks(
        self, deployment_name: str, job_filter: Optional[List[str]] = None
    ) -> List[InstanceDiskInfo]:
        self.calls.append(
            ("get_persistent_disks", {"deployment_name": deployment_name, "job_filter": job_filter})
        )
        if deployment_name not in self.deployments:
            raise RemoteOperationFailed(
                f"Deployment {deployment_name} not found", operation="get_persistent_disks"
            )
        return [
            InstanceDiskInfo(
                job_name=instance["job"],
                instance_id=instance["id"],
                availability_zone=instance.get("az"),
                disk_cid=instance.get("disk_cid"),
            )
            for instance in self.deployments[deployment_name]
            if instance.get("disk_cid") and (not job_filter or instance["job"] in job_filter)
        ]
