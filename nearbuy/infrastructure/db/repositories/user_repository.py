from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nearbuy.infrastructure.db.models import FishSeller, JobWorker, Shop, User


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone: str) -> User | None:
        stmt = select(User).where(User.phone == phone, User.is_active.is_(True))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_any_by_phone(self, phone: str) -> User | None:
        """Including deactivated accounts, so a re-registration can revive the row."""
        stmt = select(User).where(User.phone == phone)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        self.db.add(user)
        await self.db.flush()
        return user

    async def get_shop_for_owner(self, user_id: int) -> Shop | None:
        stmt = select(Shop).where(Shop.owner_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_fish_seller(self, user_id: int) -> FishSeller | None:
        stmt = select(FishSeller).where(FishSeller.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_worker(self, user_id: int) -> JobWorker | None:
        stmt = select(JobWorker).where(JobWorker.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def shops_in_box(
        self, category: str, min_lat: float, max_lat: float, min_lng: float, max_lng: float
    ) -> list[Shop]:
        stmt = select(Shop).where(
            Shop.is_active.is_(True),
            Shop.category == category,
            Shop.latitude.between(min_lat, max_lat),
            Shop.longitude.between(min_lng, max_lng),
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
