from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from vetclinic.models.sequence import SequenceCounter
import logging

logger = logging.getLogger(__name__)


class SequenceService:
    """Hands out strictly increasing numbers from a locked counter row.

    The increment happens inside the caller's transaction and is never
    committed here: if the caller rolls back, the number is given back.
    Counting existing rows and adding one is not safe under concurrency and
    is not used anywhere.
    """

    def __init__(self):
        pass

    async def next_value(self, name: str, db: AsyncSession) -> int:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counter = (await db.execute(stmt)).scalar_one_or_none()

        if counter is None:
            # first use; another worker may create the row at the same time
            savepoint = await db.begin_nested()
            try:
                db.add(SequenceCounter(name=name, current_value=1))
                await db.flush()
                await savepoint.commit()
                logger.debug(f"sequence {name} started at 1")
                return 1
            except IntegrityError:
                await savepoint.rollback()
                logger.debug(f"sequence {name} created concurrently, retrying")
                counter = (await db.execute(stmt)).scalar_one()

        counter.current_value += 1
        await db.flush()
        logger.debug(f"sequence {name} allocated {counter.current_value}")
        return counter.current_value
