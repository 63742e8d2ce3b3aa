"""SQLite implementation of the workflow store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional

from ..transports import BaseTransport
from .repository import WorkflowStore


class SQLiteWorkflowStore(WorkflowStore):
    """Persist workflow records using SQLite."""

    def __init__(
        self, db_path: str | Path, transport: Optional[BaseTransport] = None, **kwargs
    ) -> None:
        super().__init__(transport, **kwargs)
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._db_lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._db_lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_records (
                    restore_id TEXT PRIMARY KEY,
                    phase TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    document TEXT NOT NULL,
                    updated_at TEXT
                )
                """
            )
            self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._db_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._db_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._db_lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        with self._db_lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Backend primitives
    async def _insert(self, restore_id: str, document: dict) -> bool:
        try:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO workflow_records (restore_id, phase, version, document, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                restore_id,
                document["phase"],
                document["version"],
                json.dumps(document),
                document.get("updatedAt"),
            )
        except sqlite3.IntegrityError:
            return False
        return True

    async def _load(self, restore_id: str) -> Optional[dict]:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM workflow_records WHERE restore_id = ?",
            restore_id,
        )
        if not row:
            return None
        return json.loads(row["document"])

    async def _swap(self, restore_id: str, expected_version: int, document: dict) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_records
            SET phase = ?, version = ?, document = ?, updated_at = ?
            WHERE restore_id = ? AND version = ?
            """,
            document["phase"],
            document["version"],
            json.dumps(document),
            document.get("updatedAt"),
            restore_id,
            expected_version,
        )
        return updated == 1

    async def _load_all(self) -> List[dict]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT document FROM workflow_records ORDER BY restore_id",
        )
        return [json.loads(r["document"]) for r in rows]
