#!/usr/bin/env python3
"""Daily job: give every user their free like back."""
import asyncio
import sys

from loguru import logger

# Add the root directory to the path
sys.path.append('.')

from glimpse.core.credit_ledger import CreditLedger
from glimpse.db.base import dispose_engine, get_session_factory
from glimpse.db.utils.session_management import with_retry


@with_retry(max_attempts=5)
async def reset_free_likes() -> int:
    logger.info("Starting daily free like reset...")
    ledger = CreditLedger()
    async with get_session_factory()() as session:
        try:
            count = await ledger.reset_free_likes(session)
            await session.commit()
        except Exception as e:
            logger.error(f"Error resetting free likes: {e}")
            await session.rollback()
            raise
    logger.info(f"Free like reset completed for {count} user(s)")
    return count


async def main():
    try:
        await reset_free_likes()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
