"""In-memory implementation of the workflow store."""

from __future__ import annotations

import asyncio
import copy
from typing import Dict, List, Optional

from ..transports import BaseTransport
from .repository import WorkflowStore


class InMemoryWorkflowStore(WorkflowStore):
    """Store workflow records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self, transport: Optional[BaseTransport] = None, **kwargs) -> None:
        super().__init__(transport, **kwargs)
        self._documents: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def _insert(self, restore_id: str, document: dict) -> bool:
        async with self._lock:
            if restore_id in self._documents:
                return False
            self._documents[restore_id] = copy.deepcopy(document)
            return True

    async def _load(self, restore_id: str) -> Optional[dict]:
        document = self._documents.get(restore_id)
        return copy.deepcopy(document) if document is not None else None

    async def _swap(self, restore_id: str, expected_version: int, document: dict) -> bool:
        async with self._lock:
            stored = self._documents.get(restore_id)
            if stored is None or stored.get("version") != expected_version:
                return False
            self._documents[restore_id] = copy.deepcopy(document)
            return True

    async def _load_all(self) -> List[dict]:
        return [copy.deepcopy(document) for document in self._documents.values()]
