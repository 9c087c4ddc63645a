from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from glimpse.core import diagnostics
from glimpse.core.errors import CreditIntegrityError
from glimpse.db.base import utcnow
from glimpse.db.models import CreditBalance
from glimpse.db.repositories.credit_repo import CreditRepository, credit_repo


class DebitResult(str, Enum):
    CONSUMED_FREE = "free"
    CONSUMED_PURCHASED = "purchased"
    UNLIMITED = "unlimited"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PurchaseResult:
    payment_id: str
    applied: bool
    credits: int
    unlimited_until: Optional[datetime]


class CreditLedger:
    """Like allowance of each user.

    A like is allowed while the unlimited window is open, or a purchased
    credit is left, or the daily free like is unused. Debits are single
    conditional UPDATEs, so two concurrent debits on a balance of one can
    never both succeed.

    The ledger never commits; it runs inside the caller's transaction.
    """

    def __init__(self, repo: CreditRepository = credit_repo, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.clock = clock

    async def get_balance(self, session: AsyncSession, user_id: str) -> CreditBalance:
        return await self.repo.get_balance(session, user_id)

    async def can_send_like(self, session: AsyncSession, user_id: str) -> bool:
        balance = await self.repo.get_balance(session, user_id)
        return (
            balance.has_unlimited(self.clock())
            or balance.purchased_credits > 0
            or balance.free_like_available
        )

    async def debit(self, session: AsyncSession, user_id: str) -> DebitResult:
        """Consume one unit, preferring the free daily like over purchased credits."""
        balance = await self.repo.get_balance(session, user_id)
        if balance.has_unlimited(self.clock()):
            return DebitResult.UNLIMITED

        if await self.repo.try_consume_free(session, user_id):
            result = DebitResult.CONSUMED_FREE
        elif await self.repo.try_consume_purchased(session, user_id):
            result = DebitResult.CONSUMED_PURCHASED
        else:
            logger.info(f"Debit rejected for user {user_id}: no allowance left")
            return DebitResult.REJECTED

        balance = await self.repo.get_balance(session, user_id)
        if balance.purchased_credits < 0:
            logger.error(f"Negative credit balance for user {user_id}: {balance.purchased_credits}")
            raise CreditIntegrityError(f"Negative purchased credits for user {user_id}")
        diagnostics.record(f"debit:{result.value}")
        return result

    async def refund(self, session: AsyncSession, user_id: str, source: str) -> bool:
        """Give back the unit a cancelled like consumed. Unlimited debits cost nothing."""
        if source == DebitResult.CONSUMED_FREE.value:
            return await self.repo.restore_free(session, user_id)
        if source == DebitResult.CONSUMED_PURCHASED.value:
            await self.repo.add_purchased(session, user_id, 1)
            return True
        return False

    async def credit(self, session: AsyncSession, user_id: str, amount: int) -> CreditBalance:
        """Add purchased credits after a confirmed payment."""
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive, got {amount}")
        await self.repo.add_purchased(session, user_id, amount)
        logger.info(f"Credited {amount} like(s) to user {user_id}")
        return await self.repo.get_balance(session, user_id)

    async def grant_unlimited(self, session: AsyncSession, user_id: str, until: datetime) -> CreditBalance:
        """Open or extend the unlimited window. A later existing window is kept."""
        await self.repo.extend_unlimited(session, user_id, until)
        balance = await self.repo.get_balance(session, user_id)
        logger.info(f"Unlimited likes for user {user_id} until {balance.unlimited_until}")
        return balance

    async def reset_free_likes(self, session: AsyncSession) -> int:
        count = await self.repo.reset_free_likes(session)
        logger.info(f"Reset daily free like for {count} user(s)")
        return count

    async def apply_purchase(
        self,
        session: AsyncSession,
        payment_id: str,
        user_id: str,
        credits: int = 0,
        unlimited_days: int = 0,
    ) -> PurchaseResult:
        """Apply a confirmed payment exactly once, keyed by ``payment_id``."""
        if credits < 0 or unlimited_days < 0:
            raise ValueError("Purchase amounts must not be negative")
        if credits == 0 and unlimited_days == 0:
            raise ValueError("Purchase grants nothing")

        existing = await self.repo.get_purchase(session, payment_id)
        if existing is not None:
            logger.info(f"Payment {payment_id} already applied, skipping")
            balance = await self.repo.get_balance(session, existing.user_id)
            return PurchaseResult(payment_id, False, balance.purchased_credits, balance.unlimited_until)

        await self.repo.add_purchase(session, payment_id, user_id, credits, unlimited_days)
        if credits:
            await self.repo.add_purchased(session, user_id, credits)
        if unlimited_days:
            balance = await self.repo.get_balance(session, user_id)
            now = self.clock()
            start = balance.unlimited_until if balance.has_unlimited(now) else now
            await self.repo.extend_unlimited(session, user_id, start + timedelta(days=unlimited_days))
        balance = await self.repo.get_balance(session, user_id)
        logger.info(f"Applied payment {payment_id} for user {user_id}: +{credits} credits, +{unlimited_days} unlimited days")
        return PurchaseResult(payment_id, True, balance.purchased_credits, balance.unlimited_until)
