from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nearbuy.infrastructure.db.models import ProductRequest, ProductResponse


class ProductRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_request(self, request_id: int) -> ProductRequest | None:
        stmt = select(ProductRequest).where(ProductRequest.id == request_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def request_number_exists(self, number: str) -> bool:
        stmt = select(ProductRequest.id).where(ProductRequest.request_number == number)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def add(self, row):
        self.db.add(row)
        await self.db.flush()
        return row

    async def requests_for_user(self, user_id: int, limit: int = 10) -> list[ProductRequest]:
        stmt = (
            select(ProductRequest)
            .where(ProductRequest.user_id == user_id)
            .order_by(ProductRequest.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def open_requests_in_category(self, category: str, exclude_responded_by: int) -> list[ProductRequest]:
        responded = select(ProductResponse.request_id).where(ProductResponse.shop_id == exclude_responded_by)
        stmt = (
            select(ProductRequest)
            .where(
                ProductRequest.status == "open",
                ProductRequest.category == category,
                ProductRequest.expires_at > func.now(),
                ProductRequest.id.not_in(responded),
            )
            .order_by(ProductRequest.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def response_for(self, request_id: int, shop_id: int) -> ProductResponse | None:
        stmt = select(ProductResponse).where(
            ProductResponse.request_id == request_id, ProductResponse.shop_id == shop_id
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_response(self, response_id: int) -> ProductResponse | None:
        stmt = select(ProductResponse).where(ProductResponse.id == response_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def responses_for(self, request_id: int) -> list[ProductResponse]:
        stmt = (
            select(ProductResponse)
            .where(ProductResponse.request_id == request_id)
            .order_by(ProductResponse.created_at)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_responses(self, request_id: int) -> int:
        stmt = select(func.count(ProductResponse.id)).where(
            ProductResponse.request_id == request_id, ProductResponse.available.is_(True)
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())
