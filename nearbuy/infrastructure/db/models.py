from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from nearbuy.infrastructure.db.base import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    user_type = Column(String(20), nullable=False, default="customer")
    latitude = Column(Float)
    longitude = Column(Float)
    notification_frequency = Column(String(20), default="immediate")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    deleted_at = Column(DateTime(timezone=True))

    shop = relationship("Shop", back_populates="owner", uselist=False, lazy="selectin")
    fish_seller = relationship("FishSeller", back_populates="user", uselist=False, lazy="selectin")
    worker = relationship("JobWorker", back_populates="user", uselist=False, lazy="selectin")


class Shop(Base):
    __tablename__ = "shops"
    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    category = Column(String(30), index=True, nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)
    notification_frequency = Column(String(20), default="immediate")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    owner = relationship("User", back_populates="shop", lazy="selectin")


class FishSeller(Base):
    __tablename__ = "fish_sellers"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    market_name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User", back_populates="fish_seller", lazy="selectin")


class JobWorker(Base):
    __tablename__ = "job_workers"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    photo_url = Column(String(500))
    vehicle_type = Column(String(20), default="none", nullable=False)
    job_types = Column(JSON, nullable=False, default=list)
    availability = Column(String(20), default="flexible", nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User", back_populates="worker")


class Agreement(Base):
    __tablename__ = "agreements"
    id = Column(Integer, primary_key=True, autoincrement=True)
    agreement_number = Column(String(30), unique=True, index=True, nullable=False)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    direction = Column(String(10), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    counterparty_name = Column(String(100), nullable=False)
    counterparty_phone = Column(String(20), index=True, nullable=False)
    purpose = Column(String(20), nullable=False)
    description = Column(Text)
    due_date = Column(Date)
    status = Column(String(20), default="pending", index=True, nullable=False)
    pdf_url = Column(String(500))
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    expires_at = Column(DateTime(timezone=True))
    responded_at = Column(DateTime(timezone=True))

    creator = relationship("User", lazy="selectin")


class Offer(Base):
    __tablename__ = "offers"
    id = Column(Integer, primary_key=True, autoincrement=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), index=True, nullable=False)
    image_url = Column(String(500), nullable=False)
    caption = Column(String(500))
    validity = Column(String(10), nullable=False)
    expires_at = Column(DateTime(timezone=True), index=True, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    shop = relationship("Shop", lazy="selectin")


class ProductRequest(Base):
    __tablename__ = "product_requests"
    id = Column(Integer, primary_key=True, autoincrement=True)
    request_number = Column(String(20), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    category = Column(String(30), nullable=False)
    description = Column(String(500), nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)
    radius_km = Column(Float, default=5)
    status = Column(String(20), default="open", index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User", lazy="selectin")
    responses = relationship("ProductResponse", back_populates="request")


class ProductResponse(Base):
    __tablename__ = "product_responses"
    __table_args__ = (UniqueConstraint("request_id", "shop_id", name="uq_response_request_shop"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Integer, ForeignKey("product_requests.id"), index=True, nullable=False)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False)
    available = Column(Boolean, nullable=False)
    price = Column(Numeric(12, 2))
    details = Column(String(500))
    photo_url = Column(String(500))
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))

    request = relationship("ProductRequest", back_populates="responses")
    shop = relationship("Shop", lazy="selectin")


class FishType(Base):
    __tablename__ = "fish_types"
    code = Column(String(30), primary_key=True)
    name = Column(String(50), nullable=False)
    local_name = Column(String(50), default="")
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)


class FishCatch(Base):
    __tablename__ = "fish_catches"
    id = Column(Integer, primary_key=True, autoincrement=True)
    seller_id = Column(Integer, ForeignKey("fish_sellers.id"), index=True, nullable=False)
    fish_type = Column(String(30), ForeignKey("fish_types.code"), nullable=False)
    quantity_range = Column(String(20), nullable=False)
    price_per_kg = Column(Numeric(10, 2), nullable=False)
    photo_url = Column(String(500))
    status = Column(String(20), default="available", nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"))
    expires_at = Column(DateTime(timezone=True), index=True)

    seller = relationship("FishSeller", lazy="selectin")
    fish = relationship("FishType", lazy="selectin")
