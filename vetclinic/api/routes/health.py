from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from vetclinic.db.session import get_db
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def health(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        logger.exception("health check could not reach the database")
        database = "unavailable"
    return {"status": "ok", "database": database}
