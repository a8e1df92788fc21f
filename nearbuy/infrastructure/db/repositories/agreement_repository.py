from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from nearbuy.infrastructure.db.models import Agreement


class AgreementRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, agreement_id: int) -> Agreement | None:
        stmt = select(Agreement).where(Agreement.id == agreement_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, agreement: Agreement) -> Agreement:
        self.db.add(agreement)
        await self.db.flush()
        return agreement

    async def last_number_with_prefix(self, prefix: str) -> str | None:
        stmt = (
            select(Agreement.agreement_number)
            .where(Agreement.agreement_number.like(f"{prefix}%"))
            .order_by(Agreement.agreement_number.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def pending_for_phone_suffix(self, suffix: str) -> list[Agreement]:
        stmt = (
            select(Agreement)
            .where(
                Agreement.status == "pending",
                Agreement.counterparty_phone.like(f"%{suffix}"),
                or_(Agreement.expires_at.is_(None), Agreement.expires_at > func.now()),
            )
            .order_by(Agreement.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def for_user(self, user_id: int, phone_suffix: str, limit: int = 20) -> list[Agreement]:
        stmt = (
            select(Agreement)
            .where(or_(Agreement.creator_id == user_id, Agreement.counterparty_phone.like(f"%{phone_suffix}")))
            .order_by(Agreement.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
