"""Orchestrator backend interface consumed by the phase handlers."""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from ..config import PollingConfig
from ..contracts import InstanceDiskInfo, TaskHandle, TaskResult
from ..errors import PollTimeout
from ..utils.retry import compute_backoff

logger = logging.getLogger(__name__)


class CloudProvider(Protocol):
    """IaaS client able to create persistent disks from snapshots."""

    async def create_disk_from_snapshot(
        self, snapshot_id: str, availability_zone: Optional[str]
    ) -> str:
        """Start creating a disk and return its volume id."""

    async def get_disk(self, volume_id: str) -> Dict[str, Any]:
        """Return the disk description including its ``status``."""


class BoshBackend(metaclass=abc.ABCMeta):
    """VM lifecycle operations on a BOSH-style deployment orchestrator.

    Every mutating operation returns a ``TaskHandle`` immediately; callers
    wait for the outcome with ``poll_task``.
    """

    def __init__(self, polling: Optional[PollingConfig] = None) -> None:
        self.polling = polling or PollingConfig()

    @abc.abstractmethod
    async def stop_deployment(self, deployment_name: str) -> TaskHandle:
        raise NotImplementedError

    @abc.abstractmethod
    async def start_deployment(self, deployment_name: str) -> TaskHandle:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_disk_from_snapshot(
        self, snapshot_id: str, availability_zone: Optional[str]
    ) -> TaskHandle:
        raise NotImplementedError

    @abc.abstractmethod
    async def attach_disk(
        self, deployment_name: str, volume_id: str, job_name: str, instance_id: str
    ) -> TaskHandle:
        raise NotImplementedError

    @abc.abstractmethod
    async def run_errand(
        self, deployment_name: str, errand_name: str, instances: List[Dict[str, str]]
    ) -> TaskHandle:
        """Run ``errand_name`` on the given ``{"group", "id"}`` instance selectors."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_task(self, handle: TaskHandle) -> TaskResult:
        """Return the current state of a task without waiting."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get_deployment_names(self, include_queued: bool = False) -> List[str]:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_persistent_disks(
        self, deployment_name: str, job_filter: Optional[List[str]] = None
    ) -> List[InstanceDiskInfo]:
        raise NotImplementedError

    async def poll_task(
        self,
        handle: TaskHandle,
        timeout: Optional[float] = None,
        operation: Optional[str] = None,
    ) -> TaskResult:
        """Poll ``handle`` until it is terminal.

        Sleeps between polls with capped exponential backoff, so only the
        calling coroutine waits.

        Raises:
            PollTimeout: the task was still running when ``timeout`` elapsed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        attempt = 0
        while True:
            result = await self.get_task(handle)
            if result.is_terminal:
                logger.debug(f"Task {handle.task_id} finished: {result.state.value}")
                return result

            delay = compute_backoff(
                attempt,
                base=self.polling.interval,
                factor=self.polling.backoff,
                cap=self.polling.max_interval,
            )
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise PollTimeout(
                        f"Task {handle.task_id} ({operation or handle.kind}) did not "
                        f"finish within {timeout}s",
                        operation=operation,
                        task_id=handle.task_id,
                    )
                delay = min(delay, remaining)
            await asyncio.sleep(delay)
            attempt += 1
