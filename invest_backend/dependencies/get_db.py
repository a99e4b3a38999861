from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession
from invest_backend.core.database import AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    This function creates a new database session for each request
    and ensures it's properly closed after the request is completed.
    Any exception rolls the session back so a failed request never
    leaves half-applied balance changes behind.

    Yields:
        AsyncSession: Database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
