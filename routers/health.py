from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import text

from db.database import get_session

router = APIRouter()

@router.get("/health/db")
async def health_db(session: AsyncSession = Depends(get_session)):
    """Lightweight DB health check: runs SELECT 1."""
    try:
        await session.execute(text("SELECT 1"))
        return {"status": "ok", "db": True}
    except Exception as e:
        return {"status": "fail", "db": False, "error": str(e)}
