# nearbuy/domain/services/contracts.py
"""
Collaborator interfaces the conversation flows depend on.

The flows never talk to the database or the WhatsApp API directly; they are
handed a ``MessageSender`` and a ``FlowServices`` bundle.  Production wiring
lives in ``nearbuy.infrastructure``; the test-suite supplies in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol

from nearbuy.domain.models import (
    AgreementRecord,
    FishCatchRecord,
    FishSellerRecord,
    FishTypeRecord,
    MediaResult,
    OfferRecord,
    ProductRequestRecord,
    ProductResponseRecord,
    ServiceResult,
    ShopRecord,
    UserRecord,
)


class MessageSender(Protocol):
    """Outbound prompts.  Button/row entries are ``{"id", "title", "description"?}``."""

    async def send_text(self, phone: str, body: str) -> None: ...

    async def send_buttons(
        self,
        phone: str,
        body: str,
        buttons: list[dict],
        header: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> None: ...

    async def send_list(
        self,
        phone: str,
        body: str,
        button_label: str,
        sections: list[dict],
        header: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> None: ...

    async def send_image(self, phone: str, url: str, caption: Optional[str] = None) -> None: ...

    async def send_document(
        self, phone: str, url: str, filename: Optional[str] = None, caption: Optional[str] = None
    ) -> None: ...

    async def send_location(
        self,
        phone: str,
        latitude: float,
        longitude: float,
        name: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None: ...

    async def request_location(self, phone: str, body: str) -> None: ...


class UserService(Protocol):
    async def get_by_phone(self, phone: str) -> Optional[UserRecord]: ...

    async def get_by_id(self, user_id: int) -> Optional[UserRecord]: ...

    async def create_customer(
        self, phone: str, name: str, latitude: float, longitude: float
    ) -> ServiceResult[UserRecord]: ...

    async def create_shop_owner(
        self, phone: str, name: str, latitude: float, longitude: float, shop: dict[str, Any]
    ) -> ServiceResult[UserRecord]: ...

    async def create_fish_seller(
        self, phone: str, name: str, latitude: float, longitude: float, market_name: str
    ) -> ServiceResult[UserRecord]: ...

    async def register_worker(
        self, phone: str, name: str, latitude: float, longitude: float, worker: dict[str, Any]
    ) -> ServiceResult[UserRecord]:
        """Attach a worker profile, creating the user first when the phone is new."""
        ...

    async def update_location(self, user_id: int, latitude: float, longitude: float) -> ServiceResult[UserRecord]: ...

    async def update_notification_frequency(self, user_id: int, frequency: str) -> ServiceResult[UserRecord]: ...

    async def update_shop(self, user_id: int, **fields: Any) -> ServiceResult[ShopRecord]: ...

    async def set_fish_seller_active(self, user_id: int, active: bool) -> ServiceResult[FishSellerRecord]: ...

    async def deactivate(self, user_id: int) -> ServiceResult[None]: ...


class AgreementService(Protocol):
    async def create_agreement(self, user: UserRecord, fields: dict[str, Any]) -> ServiceResult[AgreementRecord]: ...

    async def get_agreement(self, agreement_id: int) -> ServiceResult[AgreementRecord]: ...

    async def list_pending_for_phone(self, phone: str) -> list[AgreementRecord]: ...

    async def list_for_user(self, user: UserRecord) -> list[AgreementRecord]: ...

    async def confirm_by_counterparty(self, agreement_id: int, phone: str) -> ServiceResult[AgreementRecord]: ...

    async def reject_by_counterparty(self, agreement_id: int, phone: str) -> ServiceResult[AgreementRecord]: ...

    async def dispute_by_counterparty(self, agreement_id: int, phone: str) -> ServiceResult[AgreementRecord]: ...

    async def generate_pdf(self, agreement_id: int) -> ServiceResult[str]: ...


class OfferService(Protocol):
    async def create_offer(
        self, shop: ShopRecord, image_url: str, caption: Optional[str], validity: str
    ) -> ServiceResult[OfferRecord]: ...

    async def browse(
        self, latitude: float, longitude: float, radius_km: float, category: Optional[str] = None
    ) -> list[OfferRecord]: ...

    async def get_offer(
        self, offer_id: int, latitude: Optional[float] = None, longitude: Optional[float] = None
    ) -> ServiceResult[OfferRecord]: ...

    async def list_for_shop(self, shop_id: int) -> list[OfferRecord]: ...

    async def extend_offer(self, offer_id: int, shop_id: int, validity: str) -> ServiceResult[OfferRecord]: ...

    async def delete_offer(self, offer_id: int, shop_id: int) -> ServiceResult[None]: ...


class ProductService(Protocol):
    async def create_request(
        self, user: UserRecord, category: str, description: str
    ) -> ServiceResult[ProductRequestRecord]: ...

    async def find_eligible_shops(self, request: ProductRequestRecord) -> list[ShopRecord]: ...

    async def get_request(self, request_id: int) -> ServiceResult[ProductRequestRecord]: ...

    async def list_for_user(self, user_id: int) -> list[ProductRequestRecord]: ...

    async def list_open_for_shop(self, shop: ShopRecord) -> list[ProductRequestRecord]: ...

    async def has_responded(self, request_id: int, shop_id: int) -> bool: ...

    async def create_response(
        self,
        request_id: int,
        shop: ShopRecord,
        available: bool,
        price: Optional[Decimal] = None,
        details: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> ServiceResult[ProductResponseRecord]: ...

    async def list_responses(self, request_id: int) -> list[ProductResponseRecord]: ...

    async def get_response(self, response_id: int) -> ServiceResult[ProductResponseRecord]: ...


class FishService(Protocol):
    async def list_fish_types(self) -> list[FishTypeRecord]: ...

    async def create_catch(
        self,
        seller: FishSellerRecord,
        fish_type: str,
        quantity_range: str,
        price_per_kg: Decimal,
        photo_url: Optional[str],
    ) -> ServiceResult[FishCatchRecord]: ...

    async def browse_catches(
        self, latitude: float, longitude: float, radius_km: float, fish_type: Optional[str] = None
    ) -> list[FishCatchRecord]:
        """Unexpired catches of active sellers within ``radius_km``, nearest first."""
        ...

    async def get_catch(
        self, catch_id: int, latitude: Optional[float] = None, longitude: Optional[float] = None
    ) -> ServiceResult[FishCatchRecord]: ...


class MediaStore(Protocol):
    async def download_and_store(self, media_id: str, folder: str) -> MediaResult: ...

    async def store_bytes(self, content: bytes, folder: str, filename: str, mime_type: str) -> MediaResult: ...


@dataclass
class FlowServices:
    users: UserService
    agreements: AgreementService
    offers: OfferService
    products: ProductService
    fish: FishService
    media: MediaStore
