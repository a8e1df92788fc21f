from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nearbuy.infrastructure.db.models import FishCatch, FishSeller, FishType, User


class FishRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def active_types(self) -> list[FishType]:
        stmt = select(FishType).where(FishType.is_active.is_(True)).order_by(FishType.sort_order, FishType.name)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_type(self, code: str) -> FishType | None:
        stmt = select(FishType).where(FishType.code == code)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def add_catch(self, catch: FishCatch) -> FishCatch:
        self.db.add(catch)
        await self.db.flush()
        return catch

    async def get_catch(self, catch_id: int) -> FishCatch | None:
        stmt = select(FishCatch).where(FishCatch.id == catch_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def active_catches_in_box(
        self,
        min_lat: float,
        max_lat: float,
        min_lng: float,
        max_lng: float,
        fish_type: str | None = None,
    ) -> list[FishCatch]:
        """Available, unexpired catches whose seller is located inside the box."""
        stmt = (
            select(FishCatch)
            .join(FishSeller, FishCatch.seller_id == FishSeller.id)
            .join(User, FishSeller.user_id == User.id)
            .where(
                FishCatch.status == "available",
                FishCatch.expires_at > func.now(),
                FishSeller.is_active.is_(True),
                User.is_active.is_(True),
                User.latitude.between(min_lat, max_lat),
                User.longitude.between(min_lng, max_lng),
            )
            .order_by(FishCatch.created_at.desc())
        )
        if fish_type:
            stmt = stmt.where(FishCatch.fish_type == fish_type)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
