from contextlib import asynccontextmanager
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from vetclinic.core.config import settings
import logging

logger = logging.getLogger(__name__)


def enable_sqlite_write_locking(engine: AsyncEngine):
    """Make every SQLite transaction start with BEGIN IMMEDIATE.

    SQLite ignores SELECT ... FOR UPDATE. Taking the write lock when the
    transaction begins serializes concurrent units of work the same way the
    row locks do on PostgreSQL, instead of failing on lock upgrade.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # stop the driver from emitting its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": 30},
        )
        enable_sqlite_write_locking(engine)
        return engine
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url, echo=settings.debug)
AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def unit_of_work(db: AsyncSession):
    """Commit everything done inside the block, or roll all of it back.

    Cancellation (timeouts included) also rolls back: nothing written in the
    block survives unless the commit itself succeeded.
    """
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


async def init_db(bind: AsyncEngine = None):
    from vetclinic.models.base import Base
    import vetclinic.models  # noqa: F401  registers every table on Base.metadata
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
