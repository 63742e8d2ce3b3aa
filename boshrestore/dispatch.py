"""Phase dispatcher for restore workflows."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from .contracts import FailureDiagnostic, Phase, WorkflowRecord
from .errors import InvariantViolation, MalformedWorkflowRecord
from .handlers import PhaseHandler
from .store import WorkflowStore

logger = logging.getLogger(__name__)

_KNOWN_PHASES = {phase.value for phase in Phase}


class PhaseDispatcher:
    """Routes a changed workflow record to the handler of its phase."""

    def __init__(self, store: WorkflowStore, handlers: Mapping[Phase, PhaseHandler]) -> None:
        self._store = store
        self._handlers = dict(handlers)

    async def process_phase_change(
        self, record: Union[WorkflowRecord, dict[str, Any]]
    ) -> Optional[WorkflowRecord]:
        """Handle one change notification.

        ``record`` is the record (or raw document) carried by the
        notification. Terminal and stale records are ignored, so replaying a
        notification never repeats remote work.

        Returns:
            The record after the handler's patch, or ``None`` if nothing ran.

        Raises:
            InvariantViolation: the phase has no handler.
        """
        if isinstance(record, dict):
            parsed = await self._parse_document(record)
            if parsed is None:
                return None
            record = parsed

        if record.phase.is_terminal:
            logger.debug(f"Restore {record.restore_id} is {record.phase.value}; nothing to do")
            return None

        try:
            current = await self._store.get(record.restore_id)
        except MalformedWorkflowRecord as e:
            await self._quarantine(record.restore_id, record.phase.short_name, e)
            return None
        if current is None:
            logger.warning(f"Restore {record.restore_id} no longer exists; ignoring change")
            return None
        if current.version != record.version:
            logger.info(
                f"Ignoring stale change for restore {record.restore_id}: "
                f"version {record.version}, stored {current.version}"
            )
            return None
        if current.phase.is_terminal:
            return None

        handler = self._handlers.get(current.phase)
        if handler is None:
            raise InvariantViolation(
                f"No handler registered for phase {current.phase.value} "
                f"(restore {current.restore_id})"
            )
        return await handler.handle(current)

    async def _parse_document(self, document: dict[str, Any]) -> Optional[WorkflowRecord]:
        phase = document.get("phase")
        if phase not in _KNOWN_PHASES:
            raise InvariantViolation(
                f"Unrecognized phase {phase!r} on restore {document.get('restoreId')!r}"
            )
        try:
            return WorkflowRecord.parse(document)
        except MalformedWorkflowRecord as e:
            restore_id = document.get("restoreId")
            if restore_id:
                await self._quarantine(restore_id, Phase(phase).short_name, e)
            else:
                logger.error(f"Dropping change without restore id: {e}")
            return None

    async def _quarantine(
        self, restore_id: str, phase_name: str, error: MalformedWorkflowRecord
    ) -> None:
        diagnostic = FailureDiagnostic(
            phase=phase_name, kind=error.kind, message=str(error)
        )
        await self._store.quarantine(restore_id, diagnostic)
