from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from libs.db.config import AsyncSessionLocal


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(
    db: AsyncSession, *, rollback_only: bool = False
) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one transaction on ``db``.

    The block commits on success and rolls back wholesale on any error.
    With ``rollback_only=True`` it always rolls back, which lets a caller
    compute a value against uncommitted writes and return it without
    persisting anything. Values returned this way must not be ORM instances:
    the rollback expires them.
    """
    try:
        yield db
    except BaseException:
        await db.rollback()
        raise
    if rollback_only:
        await db.rollback()
    else:
        await db.commit()
