# dealerbot/infra/migrations_async.py
"""
Schema setup for the Postgres conversation store.

``dealerbot/infra/sql/NNN_name.sql`` files run once each, in file-name
order, each inside its own transaction. Versions already recorded in
``schema_migrations`` are skipped, so startup can call this every time.
"""
from __future__ import annotations
from pathlib import Path

from dealerbot.infra.db_async import db_conn
from dealerbot.infra.logging_config import get_logger

logger = get_logger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"

_CREATE_VERSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version    text PRIMARY KEY,
    applied_at timestamptz NOT NULL DEFAULT now()
)
"""


def pending_files(applied: set[str], sql_dir: Path = SQL_DIR) -> list[Path]:
    """SQL files not yet recorded as applied, oldest first."""
    return [p for p in sorted(sql_dir.glob("*.sql")) if p.name not in applied]


async def apply_migrations() -> dict:
    """Returns ``{"ok": True, "applied": [...], "count": n}``."""
    async with db_conn() as conn:
        await conn.execute(_CREATE_VERSIONS_TABLE)
        applied = {r["version"] for r in await conn.fetch("SELECT version FROM schema_migrations")}

    applied_now: list[str] = []
    for path in pending_files(applied):
        async with db_conn(autocommit=False) as conn:
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", path.name)
        logger.info("Applied migration %s", path.name)
        applied_now.append(path.name)

    if not applied_now:
        logger.debug("Conversation schema up to date (%d migrations)", len(applied))
    return {"ok": True, "applied": applied_now, "count": len(applied_now)}
