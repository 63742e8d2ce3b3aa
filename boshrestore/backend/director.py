"""BOSH director REST client."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from ..config import DirectorConfig, PollingConfig
from ..contracts import InstanceDiskInfo, TaskHandle, TaskResult, TaskState
from ..errors import RemoteOperationFailed
from .base import BoshBackend, CloudProvider

logger = logging.getLogger(__name__)

_TASK_LOCATION = re.compile(r"/tasks/(\d+)")

_DIRECTOR_SUCCESS = {"done"}
_DIRECTOR_FAILURE = {"error", "timeout", "cancelled"}
_DISK_SUCCESS = {"available", "ready", "in-use"}
_DISK_FAILURE = {"error", "failed", "deleted"}


class BoshDirectorBackend(BoshBackend):
    """Talks to a BOSH director over HTTPS.

    ``requests`` is blocking, so every call runs in a worker thread. Mutating
    endpoints answer with a redirect to ``/tasks/<id>``; that id becomes the
    task handle. Disks are created by the injected ``cloud_provider``, their
    handles carry the volume id.
    """

    def __init__(
        self,
        config: DirectorConfig,
        cloud_provider: Optional[CloudProvider] = None,
        polling: Optional[PollingConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(polling)
        self.config = config
        self.cloud_provider = cloud_provider
        self._session = session or requests.Session()
        if config.username:
            self._session.auth = (config.username, config.password or "")
        self._session.verify = config.verify_ssl

    # ------------------------------------------------------------------
    # HTTP helpers
    def _url(self, path: str) -> str:
        return self.config.url.rstrip("/") + path

    def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> requests.Response:
        try:
            response = self._session.request(
                method, self._url(path), timeout=self.config.request_timeout, **kwargs
            )
        except requests.RequestException as e:
            raise RemoteOperationFailed(
                f"{operation}: request to director failed: {e}", operation=operation
            ) from e
        if response.status_code >= 400:
            raise RemoteOperationFailed(
                f"{operation}: director answered {response.status_code}: "
                f"{response.text[:200]}",
                operation=operation,
            )
        return response

    def _submit(self, method: str, path: str, operation: str, **kwargs: Any) -> TaskHandle:
        response = self._request(method, path, operation, allow_redirects=False, **kwargs)
        match = _TASK_LOCATION.search(response.headers.get("Location", ""))
        if match:
            task_id = match.group(1)
        else:
            try:
                body = response.json()
            except ValueError:
                body = None
            task_id = body.get("id") if isinstance(body, dict) else None
            if task_id is None:
                raise RemoteOperationFailed(
                    f"{operation}: director response carried no task id",
                    operation=operation,
                )
        logger.info(f"{operation}: director task {task_id}")
        return TaskHandle(task_id=str(task_id))

    def _change_state(self, deployment_name: str, state: str, operation: str) -> TaskHandle:
        return self._submit(
            "PUT",
            f"/deployments/{quote(deployment_name, safe='')}/jobs/*",
            operation,
            params={"state": state},
            headers={"Content-Type": "text/yaml"},
            data="",
        )

    # ------------------------------------------------------------------
    # Operations
    async def stop_deployment(self, deployment_name: str) -> TaskHandle:
        return await asyncio.to_thread(
            self._change_state, deployment_name, "stopped", "stop_deployment"
        )

    async def start_deployment(self, deployment_name: str) -> TaskHandle:
        return await asyncio.to_thread(
            self._change_state, deployment_name, "started", "start_deployment"
        )

    async def create_disk_from_snapshot(
        self, snapshot_id: str, availability_zone: Optional[str]
    ) -> TaskHandle:
        if self.cloud_provider is None:
            raise RemoteOperationFailed(
                "No cloud provider client configured for disk creation",
                operation="create_disk",
            )
        volume_id = await self.cloud_provider.create_disk_from_snapshot(
            snapshot_id, availability_zone
        )
        logger.info(f"create_disk: volume {volume_id} from snapshot {snapshot_id}")
        return TaskHandle(task_id=volume_id, kind="disk")

    async def attach_disk(
        self, deployment_name: str, volume_id: str, job_name: str, instance_id: str
    ) -> TaskHandle:
        return await asyncio.to_thread(
            self._submit,
            "PUT",
            f"/disks/{quote(volume_id, safe='')}/attachments",
            "attach_disk",
            params={
                "deployment": deployment_name,
                "job": job_name,
                "instance_id": instance_id,
            },
        )

    async def run_errand(
        self, deployment_name: str, errand_name: str, instances: List[Dict[str, str]]
    ) -> TaskHandle:
        return await asyncio.to_thread(
            self._submit,
            "POST",
            f"/deployments/{quote(deployment_name, safe='')}/errands/"
            f"{quote(errand_name, safe='')}/runs",
            "run_errand",
            json={"keep-alive": False, "when-changed": False, "instances": instances},
        )

    async def get_task(self, handle: TaskHandle) -> TaskResult:
        if handle.kind == "disk":
            return await self._get_disk_task(handle)
        response = await asyncio.to_thread(
            self._request, "GET", f"/tasks/{handle.task_id}", "get_task"
        )
        body = response.json()
        state = body.get("state", "")
        if state in _DIRECTOR_SUCCESS:
            task_state = TaskState.SUCCEEDED
        elif state in _DIRECTOR_FAILURE:
            task_state = TaskState.FAILED
        elif state == "queued":
            task_state = TaskState.QUEUED
        else:
            task_state = TaskState.PROCESSING
        return TaskResult(
            task_id=handle.task_id,
            state=task_state,
            message=body.get("result") or body.get("description"),
            payload=body,
        )

    async def _get_disk_task(self, handle: TaskHandle) -> TaskResult:
        if self.cloud_provider is None:
            raise RemoteOperationFailed(
                "No cloud provider client configured for disk polling",
                operation="create_disk",
                task_id=handle.task_id,
            )
        disk = await self.cloud_provider.get_disk(handle.task_id)
        status = str(disk.get("status", "")).lower()
        if status in _DISK_SUCCESS:
            task_state = TaskState.SUCCEEDED
        elif status in _DISK_FAILURE:
            task_state = TaskState.FAILED
        else:
            task_state = TaskState.PROCESSING
        payload = dict(disk)
        payload.setdefault("volumeId", handle.task_id)
        return TaskResult(
            task_id=handle.task_id, state=task_state, message=status, payload=payload
        )

    async def get_deployment_names(self, include_queued: bool = False) -> List[str]:
        response = await asyncio.to_thread(
            self._request,
            "GET",
            "/deployments",
            "get_deployment_names",
            params={
                "exclude_configs": "true",
                "exclude_releases": "true",
                "exclude_stemcells": "true",
            },
        )
        names = [d["name"] for d in response.json()]
        if include_queued:
            tasks = await asyncio.to_thread(
                self._request,
                "GET",
                "/tasks",
                "get_deployment_names",
                params={"state": "queued,processing", "verbose": "2"},
            )
            for task in tasks.json():
                name = task.get("deployment")
                if name and name not in names:
                    names.append(name)
        return names

    async def get_persistent_disks(
        self, deployment_name: str, job_filter: Optional[List[str]] = None
    ) -> List[InstanceDiskInfo]:
        response = await asyncio.to_thread(
            self._request,
            "GET",
            f"/deployments/{quote(deployment_name, safe='')}/instances",
            "get_persistent_disks",
        )
        disks: List[InstanceDiskInfo] = []
        for instance in response.json():
            disk_cid = instance.get("disk_cid") or next(
                iter(instance.get("disk_cids") or []), None
            )
            if not disk_cid:
                continue
            if job_filter and instance.get("job") not in job_filter:
                continue
            disks.append(
                InstanceDiskInfo(
                    job_name=instance["job"],
                    instance_id=instance["id"],
                    availability_zone=instance.get("az"),
                    disk_cid=disk_cid,
                )
            )
        return disks
