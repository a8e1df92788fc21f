from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nearbuy.infrastructure.db.models import Offer, Shop


class OfferRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, offer_id: int) -> Offer | None:
        stmt = select(Offer).where(Offer.id == offer_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, offer: Offer) -> Offer:
        self.db.add(offer)
        await self.db.flush()
        return offer

    async def active_in_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lng: float,
        max_lng: float,
        category: str | None = None,
    ) -> list[Offer]:
        stmt = (
            select(Offer)
            .join(Shop, Offer.shop_id == Shop.id)
            .where(
                Offer.expires_at > func.now(),
                Shop.is_active.is_(True),
                Shop.latitude.between(min_lat, max_lat),
                Shop.longitude.between(min_lng, max_lng),
            )
        )
        if category:
            stmt = stmt.where(Shop.category == category)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def active_for_shop(self, shop_id: int) -> list[Offer]:
        stmt = (
            select(Offer)
            .where(Offer.shop_id == shop_id, Offer.expires_at > func.now())
            .order_by(Offer.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, offer: Offer) -> None:
        await self.db.delete(offer)
        await self.db.flush()
