"""PostgreSQL implementation of the workflow store."""

from __future__ import annotations

import json
from typing import List, Optional

import asyncpg

from ..transports import BaseTransport
from .repository import WorkflowStore


def _decode(value) -> dict:
    return json.loads(value) if isinstance(value, str) else value


class PostgresWorkflowStore(WorkflowStore):
    """Persist workflow records using PostgreSQL."""

    def __init__(
        self, dsn: str, transport: Optional[BaseTransport] = None, **kwargs
    ) -> None:
        super().__init__(transport, **kwargs)
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_records (
                restore_id TEXT PRIMARY KEY,
                phase TEXT NOT NULL,
                version INTEGER NOT NULL,
                document JSONB NOT NULL,
                updated_at TIMESTAMPTZ DEFAULT now()
            )
            """
        )

    # ------------------------------------------------------------------
    async def _insert(self, restore_id: str, document: dict) -> bool:
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                INSERT INTO workflow_records (restore_id, phase, version, document)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (restore_id) DO NOTHING
                """,
                restore_id,
                document["phase"],
                document["version"],
                json.dumps(document),
            )
        finally:
            await conn.close()
        return status == "INSERT 0 1"

    async def _load(self, restore_id: str) -> Optional[dict]:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document FROM workflow_records WHERE restore_id = $1",
                restore_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return _decode(row["document"])

    async def _swap(self, restore_id: str, expected_version: int, document: dict) -> bool:
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE workflow_records
                SET phase = $1, version = $2, document = $3, updated_at = now()
                WHERE restore_id = $4 AND version = $5
                """,
                document["phase"],
                document["version"],
                json.dumps(document),
                restore_id,
                expected_version,
            )
        finally:
            await conn.close()
        return status == "UPDATE 1"

    async def _load_all(self) -> List[dict]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT document FROM workflow_records ORDER BY restore_id"
            )
        finally:
            await conn.close()
        return [_decode(r["document"]) for r in rows]
