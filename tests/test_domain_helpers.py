# tests/test_domain_helpers.py
"""Tests for masking, geo, price/quantity parsing, offer expiry and the agreement PDF."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from nearbuy.domain.models import AgreementRecord, ResultKind
from nearbuy.domain.services.agreement_pdf import build_agreement_pdf
from nearbuy.domain.services.geo import bounding_box, haversine_km
from nearbuy.domain.services.pii_masking import mask_email, mask_for_log, mask_phone
from nearbuy.flows.fish_catch_post import parse_quantity
from nearbuy.flows.product_response import parse_price_and_details
from nearbuy.infrastructure.db.services import SqlAgreementService, SqlOfferService, offer_expiry


# ── 1. PII masking ────────────────────────────────────────────────────

class TestMasking:
    def test_mask_phone_keeps_last_four(self):
        assert mask_phone("9876543210") == "••••••3210"
        assert mask_phone("+91 98765 43210") == "••••••••3210"
        assert mask_phone("") == ""
        assert mask_phone("12") == "••"

    def test_mask_email(self):
        assert mask_email("ravi@example.com") == "r•••@example.com"
        assert mask_email("not-an-email") == "not-an-email"

    def test_mask_for_log(self):
        masked = mask_for_log("call 9876543210 or mail ravi@example.com")
        assert "9876543210" not in masked
        assert "3210" in masked
        assert "ravi@" not in masked


# ── 2. Geo ────────────────────────────────────────────────────────────

class TestGeo:
    def test_haversine_zero(self):
        assert haversine_km(10.0, 76.0, 10.0, 76.0) == 0

    def test_haversine_kochi_to_trivandrum(self):
        distance = haversine_km(9.9312, 76.2673, 8.5241, 76.9366)
        assert 170 < distance < 180

    def test_bounding_box_contains_radius(self):
        min_lat, max_lat, min_lng, max_lng = bounding_box(10.0, 76.0, 5)
        assert min_lat < 10.0 < max_lat
        assert min_lng < 76.0 < max_lng
        assert haversine_km(10.0, 76.0, max_lat, 76.0) == pytest.approx(5, rel=0.01)


# ── 3. Price and quantity parsing ─────────────────────────────────────

class TestParsePriceAndDetails:
    def test_price_only(self):
        assert parse_price_and_details("1500") == (Decimal("1500"), None)

    def test_comma_details(self):
        assert parse_price_and_details("1500, Samsung model") == (Decimal("1500"), "Samsung model")

    def test_dash_details(self):
        assert parse_price_and_details("₹2,499 - with warranty") == (Decimal("2499"), "with warranty")

    def test_space_details(self):
        assert parse_price_and_details("899 black colour") == (Decimal("899"), "black colour")

    def test_grouped_amount_without_separator(self):
        assert parse_price_and_details("₹1,500") == (Decimal("1500"), None)

    @pytest.mark.parametrize("text", ["", None, "available", "free, ask me"])
    def test_invalid(self, text):
        assert parse_price_and_details(text) is None


class TestParseQuantity:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("5", "5_10"),
            ("5-10", "5_10"),
            ("10 to 20 kg", "10_20"),
            ("35", "20_50"),
            ("50+", "50_plus"),
            ("120kg", "50_plus"),
        ],
    )
    def test_ranges(self, text, expected):
        assert parse_quantity(text) == expected

    @pytest.mark.parametrize("text", ["0", "", None, "lots", "-5"])
    def test_invalid(self, text):
        assert parse_quantity(text) is None


# ── 4. Offer expiry ───────────────────────────────────────────────────

class TestOfferExpiry:
    NOW = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)

    def test_today_ends_at_midnight(self):
        assert offer_expiry("today", self.NOW) == datetime(2026, 3, 10, 23, 59, 59, tzinfo=timezone.utc)

    def test_three_days(self):
        assert offer_expiry("3days", self.NOW).date() == date(2026, 3, 13)

    def test_week(self):
        assert offer_expiry("week", self.NOW).date() == date(2026, 3, 17)


# ── 5. Agreement PDF ──────────────────────────────────────────────────

def _agreement(**overrides):
    fields = dict(
        id=1,
        agreement_number="NB-AG-2026-0001",
        creator_id=1,
        creator_phone="919876500001",
        creator_name="Asha",
        direction="giving",
        amount=Decimal("20000"),
        counterparty_name="Ravi",
        counterparty_phone="919999900000",
        purpose="loan",
        description="Shop repairs",
        due_date=date(2026, 4, 10),
        status="confirmed",
        created_at=datetime(2026, 3, 10, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return AgreementRecord(**fields)


class TestAgreementPdf:
    def test_renders_pdf_bytes(self):
        content = build_agreement_pdf(_agreement(), confirmed_at=datetime(2026, 3, 11, tzinfo=timezone.utc))
        assert content.startswith(b"%PDF")
        assert len(content) > 1000

    def test_receiving_direction_without_optional_fields(self):
        content = build_agreement_pdf(_agreement(direction="receiving", description=None, due_date=None))
        assert content.startswith(b"%PDF")


# ── 6. SQL services degrade on database errors ────────────────────────

class _BrokenSessionFactory:
    def __call__(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_sql_service_reports_database_errors(event_loop):
    service = SqlAgreementService(_BrokenSessionFactory(), media=None)

    result = event_loop.run_until_complete(service.get_agreement(1))

    assert result.kind == ResultKind.ERROR
    assert result.message == "get_agreement failed"


def test_sql_list_lookups_return_empty_on_errors(event_loop):
    service = SqlOfferService(_BrokenSessionFactory())

    offers = event_loop.run_until_complete(service.browse(10.0, 76.0, 5))

    assert offers == []


def test_agreement_with_self_is_refused_before_touching_db(event_loop):
    from nearbuy.domain.models import UserRecord

    service = SqlAgreementService(_BrokenSessionFactory(), media=None)
    user = UserRecord(id=1, phone="919876500001", name="Asha")

    result = event_loop.run_until_complete(
        service.create_agreement(user, {"other_party_phone": "9876500001"})
    )

    assert result.kind == ResultKind.NOT_ACTIONABLE
