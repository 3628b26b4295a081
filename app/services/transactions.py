import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Type

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.exceptions import AllocationDomainError, ConflictRetryableError, PersistenceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
    on_integrity_error: Type[AllocationDomainError] = ConflictRetryableError,
    integrity_message: str = "Concurrent update detected; retry the operation.",
) -> AsyncIterator[AsyncSession]:
    """
    Opens a session and runs the block in a single transaction.

    Commit on normal exit, rollback on any exception. Domain errors pass
    through unchanged; unique-constraint violations become
    `on_integrity_error` and every other storage failure becomes
    `PersistenceError`, both raised after the rollback.
    """
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except AllocationDomainError:
        raise
    except IntegrityError as e:
        logger.warning(f"Integrity conflict, transaction rolled back: {e.orig}")
        raise on_integrity_error(integrity_message) from e
    except SQLAlchemyError as e:
        logger.error(f"Transaction failed and was rolled back: {e}")
        raise PersistenceError("Storage failure; the operation was rolled back.") from e
