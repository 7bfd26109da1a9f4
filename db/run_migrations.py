"""
Migration runner for the intake schema using the SQLAlchemy async engine.

- Applies all .sql files in db/migrations/ in lexicographic order
- Each file may contain multiple statements separated by semicolons
- Migrations are written to be idempotent (IF NOT EXISTS)

Usage:
  python -m db.run_migrations
"""
import asyncio
import logging
from pathlib import Path
from typing import List

from sqlalchemy.sql import text

from db.database import engine
from utils.logger import setup_logging

logger = logging.getLogger("backend.migrate")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def _load_sql_files() -> List[Path]:
    if not MIGRATIONS_DIR.exists():
        return []
    files = [p for p in MIGRATIONS_DIR.iterdir() if p.is_file() and p.suffix.lower() == ".sql"]
    files.sort(key=lambda p: p.name)
    return files


def split_statements(sql: str) -> List[str]:
    """Split on semicolons after dropping full-line -- comments.

    No procedural bodies in these migrations, so a plain split is enough.
    """
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


async def apply_migration_file(path: Path) -> None:
    statements = split_statements(path.read_text(encoding="utf-8"))
    if not statements:
        logger.info("[migrate] %s: no statements (skipped)", path.name)
        return
    async with engine.begin() as conn:
        for stmt in statements:
            try:
                await conn.execute(text(stmt))
            except Exception as e:
                logger.error("[migrate] %s: error executing statement -> %s", path.name, e)
                raise
    logger.info("[migrate] %s: applied %d statements", path.name, len(statements))


async def main() -> None:
    files = _load_sql_files()
    if not files:
        logger.info("[migrate] no migration files found in %s", MIGRATIONS_DIR)
        return
    logger.info("[migrate] applying %d migration file(s) from %s", len(files), MIGRATIONS_DIR)
    try:
        for f in files:
            await apply_migration_file(f)
        logger.info("[migrate] done")
    finally:
        # Dispose before the event loop closes
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())
