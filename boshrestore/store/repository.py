"""Store abstraction for workflow records.

Backends only provide raw document primitives (insert, load, compare-and-swap,
load all). Validation, deep merging of patches, phase-transition checks and
change notifications live here so every backend enforces the same rules.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from ..constants import CHANGES_TOPIC
from ..contracts import (
    ChangeNotification,
    FailureDiagnostic,
    Phase,
    WorkflowRecord,
    utcnow,
)
from ..errors import (
    InvariantViolation,
    MalformedWorkflowRecord,
    VersionConflict,
    WorkflowExists,
    WorkflowNotFound,
)
from ..transports import BaseTransport
from ..utils.merge import deep_merge

logger = logging.getLogger(__name__)


class WorkflowStore(metaclass=abc.ABCMeta):
    """Versioned persistence for workflow records."""

    def __init__(
        self, transport: Optional[BaseTransport] = None, topic: str = CHANGES_TOPIC
    ) -> None:
        self._transport = transport
        self._topic = topic
        self._watchers: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Backend primitives
    @abc.abstractmethod
    async def _insert(self, restore_id: str, document: dict) -> bool:
        """Insert a new document; return ``False`` if the id already exists."""

    @abc.abstractmethod
    async def _load(self, restore_id: str) -> Optional[dict]:
        """Return the stored document or ``None``."""

    @abc.abstractmethod
    async def _swap(self, restore_id: str, expected_version: int, document: dict) -> bool:
        """Replace the document only if its stored version is ``expected_version``."""

    @abc.abstractmethod
    async def _load_all(self) -> List[dict]:
        """Return every stored document."""

    # ------------------------------------------------------------------
    # Store API
    async def create(self, record: WorkflowRecord) -> WorkflowRecord:
        """Persist a new record in its first phase."""
        if record.phase is not Phase.BOSH_STOP:
            raise InvariantViolation(
                f"Restore {record.restore_id} must start in {Phase.BOSH_STOP.value}, "
                f"got {record.phase.value}"
            )
        now = utcnow()
        stored = WorkflowRecord.parse(
            record.model_copy(
                update={"version": 1, "created_at": now, "updated_at": now}
            ).to_document()
        )
        if not await self._insert(stored.restore_id, stored.to_document()):
            raise WorkflowExists(f"Restore {stored.restore_id} already exists")
        logger.info(f"Created workflow record for restore {stored.restore_id}")
        await self._notify(stored)
        return stored

    async def get(self, restore_id: str) -> Optional[WorkflowRecord]:
        document = await self._load(restore_id)
        if document is None:
            return None
        return WorkflowRecord.parse(document)

    async def patch(
        self,
        restore_id: str,
        expected_version: int,
        options_delta: Optional[dict[str, Any]] = None,
        new_phase: Optional[Phase] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> WorkflowRecord:
        """Atomically merge ``options_delta``/``response`` and move to ``new_phase``.

        Raises:
            VersionConflict: ``expected_version`` is not the stored version.
            InvariantViolation: the record is terminal, the transition is not
                allowed, or the instance list would change shape.
            MalformedWorkflowRecord: the merged record fails validation.
        """
        document = await self._load(restore_id)
        if document is None:
            raise WorkflowNotFound(f"Restore {restore_id} not found")
        current = WorkflowRecord.parse(document)
        if current.version != expected_version:
            raise VersionConflict(restore_id, expected_version, current.version)
        if current.phase.is_terminal:
            raise InvariantViolation(
                f"Restore {restore_id} is {current.phase.value} and can no longer change"
            )
        if (
            new_phase is not None
            and new_phase is not current.phase
            and not Phase.can_transition(current.phase, new_phase)
        ):
            raise InvariantViolation(
                f"Illegal transition {current.phase.value} -> {new_phase.value} "
                f"for restore {restore_id}"
            )

        merged = deep_merge(
            document, {"options": options_delta or {}, "response": response or {}}
        )
        if new_phase is not None:
            merged["phase"] = new_phase.value
        merged["version"] = current.version + 1
        merged["updatedAt"] = utcnow().isoformat()
        updated = WorkflowRecord.parse(merged)
        self._check_instances_preserved(current, updated)

        if not await self._swap(restore_id, expected_version, updated.to_document()):
            latest = await self._load(restore_id)
            raise VersionConflict(
                restore_id, expected_version, (latest or {}).get("version")
            )
        logger.info(
            f"Restore {restore_id}: {current.phase.value} -> {updated.phase.value} "
            f"(version {updated.version})"
        )
        await self._notify(updated)
        return updated

    async def quarantine(self, restore_id: str, diagnostic: FailureDiagnostic) -> bool:
        """Force a record that no longer validates into FAILED.

        Operates on the raw document, bypassing options validation. Returns
        ``False`` if the record is missing, already terminal or was changed
        concurrently.
        """
        document = await self._load(restore_id)
        if document is None or document.get("phase") in (
            Phase.SUCCEEDED.value,
            Phase.FAILED.value,
        ):
            return False
        version = document.get("version", 0)
        quarantined = deep_merge(
            document,
            {
                "phase": Phase.FAILED.value,
                "version": version + 1,
                "updatedAt": utcnow().isoformat(),
                "response": {
                    "state": "failed",
                    "finished_at": utcnow().isoformat(),
                    "error": diagnostic.model_dump(mode="json", exclude_none=True),
                },
            },
        )
        swapped = await self._swap(restore_id, version, quarantined)
        if swapped:
            logger.error(
                f"Quarantined malformed restore {restore_id}: {diagnostic.message}"
            )
        return swapped

    async def list_records(
        self, phases: Optional[Iterable[Phase]] = None
    ) -> List[WorkflowRecord]:
        """Return all valid records, optionally filtered by phase."""
        wanted = set(phases) if phases is not None else None
        records: List[WorkflowRecord] = []
        for document in await self._load_all():
            try:
                record = WorkflowRecord.parse(document)
            except MalformedWorkflowRecord as e:
                logger.warning(f"Skipping malformed workflow record: {e}")
                continue
            if wanted is None or record.phase in wanted:
                records.append(record)
        return records

    async def subscribe(self, restore_id: str) -> AsyncIterator[ChangeNotification]:
        """Yield change notifications for one restore until it is terminal."""
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers[restore_id].append(queue)
        try:
            while True:
                notification: ChangeNotification = await queue.get()
                yield notification
                if notification.phase.is_terminal:
                    return
        finally:
            self._watchers[restore_id].remove(queue)
            if not self._watchers[restore_id]:
                del self._watchers[restore_id]

    # ------------------------------------------------------------------
    async def _notify(self, record: WorkflowRecord) -> None:
        notification = ChangeNotification.for_record(record)
        for queue in self._watchers.get(record.restore_id, []):
            queue.put_nowait(notification)
        if self._transport is None:
            return
        try:
            await self._transport.publish(self._topic, notification)
        except Exception as e:
            logger.error(
                f"Failed to publish change for restore {record.restore_id} "
                f"(version {record.version}): {e}. Record is stored; "
                "the status poller will re-drive it."
            )
            raise

    @staticmethod
    def _check_instances_preserved(
        before: WorkflowRecord, after: WorkflowRecord
    ) -> None:
        old = [i.key for i in before.metadata.deployment_instances_info]
        new = [i.key for i in after.metadata.deployment_instances_info]
        if old != new:
            raise InvariantViolation(
                f"Restore {before.restore_id}: deploymentInstancesInfo may only be "
                "enriched, not resized or reordered"
            )
