from .agreement_repository import AgreementRepository
from .fish_repository import FishRepository
from .offer_repository import OfferRepository
from .product_repository import ProductRepository
from .user_repository import UserRepository

__all__ = [
    "UserRepository",
    "AgreementRepository",
    "OfferRepository",
    "ProductRepository",
    "FishRepository",
]
