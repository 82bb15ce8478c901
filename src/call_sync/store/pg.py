from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, TypedDict

import psycopg
from loguru import logger
from psycopg import sql as psql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from ..errors import map_db_error
from ..models import CallRecord, UpdateStatus

TABLE = "calls"

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS calls (
    call_id          TEXT PRIMARY KEY,
    user_id          TEXT,
    phone_number     TEXT,
    status           TEXT,
    duration_seconds DOUBLE PRECISION,
    transcript       TEXT,
    recording_url    TEXT,
    error_message    TEXT,
    update_status    TEXT DEFAULT 'Pending',
    sink_row         INTEGER,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS calls_update_status_idx ON calls (update_status, updated_at DESC);
"""

# Columns reconciliation may write; call_id and timestamps are managed here.
UPDATABLE_COLUMNS = (
    "status",
    "duration_seconds",
    "transcript",
    "recording_url",
    "error_message",
    "update_status",
    "sink_row",
)


def needing_refresh_select(limit: int) -> psql.Composed:
    return psql.SQL(
        "SELECT call_id AS id, status, duration_seconds, transcript, recording_url, "
        "update_status, error_message, sink_row, updated_at "
        "FROM {} "
        "WHERE update_status IN ({pending}, {error}) OR update_status IS NULL "
        "ORDER BY updated_at DESC NULLS LAST "
        "LIMIT {limit}"
    ).format(
        psql.Identifier(TABLE),
        pending=psql.Literal(UpdateStatus.PENDING.value),
        error=psql.Literal(UpdateStatus.ERROR.value),
        limit=psql.Literal(int(limit)),
    )


def update_statement(cols: List[str]) -> psql.Composed:
    """UPDATE calls SET col = %(col)s, ..., updated_at = now() WHERE call_id = %(id)s"""
    setlist = psql.SQL(", ").join(
        psql.SQL("{} = {}").format(psql.Identifier(c), psql.Placeholder(c)) for c in cols
    )
    return psql.SQL("UPDATE {} SET {}, updated_at = now() WHERE call_id = {}").format(
        psql.Identifier(TABLE), setlist, psql.Placeholder("id")
    )


class PgStoreConfig(TypedDict, total=False):
    dsn: str
    app_name: str
    statement_timeout_ms: int
    pool_max: int


DEFAULTS: PgStoreConfig = {
    "pool_max": 5,
    "app_name": "call-sync",
}


class PgCallStore:
    """
    CallStore over a PostgreSQL ``calls`` table (psycopg 3, async pool).

    Missing schema or an unreachable server surfaces as CallStoreUnavailable,
    anything else as CallStoreError.
    """

    def __init__(self, cfg: PgStoreConfig):
        self.cfg: PgStoreConfig = {**DEFAULTS, **(cfg or {})}
        if "dsn" not in self.cfg:
            raise ValueError("dsn required")
        self.pool = AsyncConnectionPool(
            conninfo=self.cfg["dsn"],
            min_size=1,
            max_size=self.cfg["pool_max"],
            kwargs={"autocommit": False},
            configure=self._configure,
            open=False,
        )
        self._opened = False

    def session_settings(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.cfg.get("app_name"):
            out["application_name"] = self.cfg["app_name"]
        if self.cfg.get("statement_timeout_ms"):
            out["statement_timeout"] = int(self.cfg["statement_timeout_ms"])
        return out

    async def _configure(self, conn: psycopg.AsyncConnection) -> None:
        """Run once per pooled connection; must hand it back idle."""
        for name, value in self.session_settings().items():
            await conn.execute(
                psql.SQL("SET {} = {}").format(psql.Identifier(name), psql.Literal(value))
            )
        await conn.commit()

    async def aclose(self) -> None:
        if self._opened:
            await self.pool.close()
            self._opened = False

    @asynccontextmanager
    async def _conn(self) -> AsyncIterator[psycopg.AsyncConnection]:
        try:
            if not self._opened:
                await self.pool.open(wait=True, timeout=10.0)
                self._opened = True
            async with self.pool.connection() as conn:
                yield conn
        except psycopg.Error as exc:
            raise map_db_error(exc) from exc

    # ---------- health / schema ----------

    async def health(self) -> bool:
        async with self._conn() as conn:
            await conn.execute("SELECT 1")
            return True

    async def init_schema(self) -> None:
        async with self._conn() as conn:
            await conn.execute(SCHEMA_DDL)
            await conn.commit()
        logger.info(f"Ensured table {TABLE!r} exists")

    # ---------- CallStore ----------

    async def find_needing_refresh(self, limit: int) -> List[CallRecord]:
        q = needing_refresh_select(limit)
        async with self._conn() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(q)
                rows = await cur.fetchall()
                return [CallRecord(**r) for r in rows]

    async def update(self, id: str, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"cannot update column(s): {', '.join(sorted(unknown))}")
        if not fields:
            return

        cols = [c for c in UPDATABLE_COLUMNS if c in fields]
        params: Dict[str, Optional[Any]] = {c: fields[c] for c in cols}
        params["id"] = id
        async with self._conn() as conn:
            async with conn.cursor() as cur:
                await cur.execute(update_statement(cols), params)
                if cur.rowcount == 0:
                    logger.warning(f"No call record {id!r} to update")
            await conn.commit()
