"""
PostgreSQL connection module for the form intake service using a SQLAlchemy async engine with connection pooling
"""

import os
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.engine import URL
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables (do not override shell env)
load_dotenv()
_project_env = Path(__file__).resolve().parents[1] / ".env"
if _project_env.exists():
    load_dotenv(dotenv_path=str(_project_env), override=False)

DATABASE_URL_ENV = os.getenv("DATABASE_URL", "")
DB_NAME = os.getenv("POSTGRES_DB", "forms")
DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "")
DB_HOST = os.getenv("POSTGRES_HOST", "localhost")
DB_PORT = os.getenv("POSTGRES_PORT", "5432")
# asyncpg takes "ssl" rather than libpq's "sslmode"
DB_SSL = os.getenv("DB_SSL", "prefer")


def _normalize_asyncpg_url(dsn: str) -> str:
    # Ensure SQLAlchemy uses asyncpg driver
    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://"):]
    if dsn.startswith("postgres://"):
        return "postgresql+asyncpg://" + dsn[len("postgres://"):]
    return dsn

if DATABASE_URL_ENV:
    DATABASE_URL = _normalize_asyncpg_url(DATABASE_URL_ENV)
else:
    # Build from discrete env vars
    DATABASE_URL = URL.create(
        drivername="postgresql+asyncpg",
        username=DB_USER,
        password=DB_PASSWORD,
        host=DB_HOST,
        port=int(DB_PORT) if str(DB_PORT).isdigit() else None,
        database=DB_NAME,
        query={"ssl": DB_SSL},
    )

engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_size=5,
    max_overflow=10,
    pool_timeout=30,
    pool_recycle=1800,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine, expire_on_commit=False, class_=AsyncSession
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an AsyncSession and manages commit/rollback/close."""
    session = async_session_maker()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
