"""Change-notification consumer that drives restore workflows."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from .constants import CHANGES_TOPIC
from .contracts import ChangeNotification
from .errors import RestoreError
from .registry import ServiceRegistry
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class RestoreController:
    """Listens for record changes and hands each one to its plan's service.

    Every notification is processed in its own task so one slow restore
    never holds up another. A notification for a (restore, version) pair that
    is already being processed is acknowledged and dropped.
    """

    def __init__(
        self,
        transport: BaseTransport,
        services: ServiceRegistry,
        topic: str = CHANGES_TOPIC,
    ) -> None:
        self._transport = transport
        self._services = services
        self._topic = topic
        self._active: Dict[Tuple[str, int], asyncio.Task] = {}

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume notifications until ``lifespan`` seconds have passed."""
        logger.info(f"Restore controller listening on {self._topic}")
        try:
            async for raw_message, notification in self._transport.subscribe(
                self._topic, lifespan=lifespan
            ):
                key = (notification.restore_id, notification.version)
                if key in self._active:
                    logger.debug(
                        f"Restore {key[0]} version {key[1]} already in progress; "
                        "dropping duplicate"
                    )
                    await self._transport.ack(raw_message)
                    continue
                task = asyncio.create_task(self._handle(raw_message, notification))
                self._active[key] = task
                task.add_done_callback(lambda _t, key=key: self._active.pop(key, None))
        finally:
            await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight notifications to finish."""
        if self._active:
            await asyncio.gather(*list(self._active.values()), return_exceptions=True)

    async def _handle(self, raw_message: Any, notification: ChangeNotification) -> None:
        restore_id = notification.restore_id
        if notification.phase.is_terminal:
            logger.info(f"Restore {restore_id} finished: {notification.phase.value}")
            await self._transport.ack(raw_message)
            return

        try:
            await self._services.process_phase_change(notification.record)
        except RestoreError as e:
            logger.error(
                f"Restore {restore_id}: could not process {notification.phase.value} "
                f"(version {notification.version}): {e}"
            )
            await self._transport.nack(raw_message, requeue=False)
            return
        except Exception:
            logger.exception(
                f"Restore {restore_id}: unexpected error processing "
                f"{notification.phase.value}"
            )
            await self._transport.nack(raw_message, requeue=False)
            return

        await self._transport.ack(raw_message)
