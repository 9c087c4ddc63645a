#!/usr/bin/env python3
"""Support tool: grant purchased credits or an unlimited window to a user.

    python scripts/grant_credits.py <user_id> --credits 5
    python scripts/grant_credits.py <user_id> --unlimited-days 30
"""
import argparse
import asyncio
import sys
from datetime import timedelta

from loguru import logger

# Add the root directory to the path
sys.path.append('.')

from glimpse.core.credit_ledger import CreditLedger
from glimpse.db.base import dispose_engine, get_session_factory, utcnow
from glimpse.db.repositories import user_repo


async def grant(user_id: str, credits: int, unlimited_days: int) -> None:
    ledger = CreditLedger()
    async with get_session_factory()() as session:
        try:
            if await user_repo.get(session, user_id) is None:
                logger.error(f"User {user_id} not found")
                return
            if credits:
                balance = await ledger.credit(session, user_id, credits)
                logger.info(f"User {user_id} now has {balance.purchased_credits} purchased credit(s)")
            if unlimited_days:
                balance = await ledger.grant_unlimited(session, user_id, utcnow() + timedelta(days=unlimited_days))
                logger.info(f"User {user_id} has unlimited likes until {balance.unlimited_until}")
            await session.commit()
        except Exception as e:
            logger.error(f"Error granting credits: {e}")
            await session.rollback()
            raise


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Grant like credits to a user")
    parser.add_argument("user_id")
    parser.add_argument("--credits", type=int, default=0)
    parser.add_argument("--unlimited-days", type=int, default=0)
    args = parser.parse_args(argv)
    if args.credits <= 0 and args.unlimited_days <= 0:
        parser.error("Nothing to grant: pass --credits and/or --unlimited-days")
    return args


async def main():
    args = parse_args()
    try:
        await grant(args.user_id, args.credits, args.unlimited_days)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
