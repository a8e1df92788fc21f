# tests/test_validators.py
"""Tests for input parsing, keyword matching and amount helpers."""

from datetime import date
from decimal import Decimal

import pytest

from nearbuy.domain.incoming_message import IncomingMessage
from nearbuy.domain.services.agreement_pdf import amount_in_words
from nearbuy.domain.services.keyword_matcher import match_keyword, normalize
from nearbuy.domain.services.validators import (
    format_amount,
    is_skip,
    normalize_phone,
    parse_amount,
    phones_match,
    validate_description,
    validate_name,
)
from nearbuy.flows.agreement_confirm import DECISIONS
from nearbuy.flows.agreement_create import DUE_DATES, due_date_for
from nearbuy.flows.registration import USER_TYPES


# ── parse_amount / format_amount ──────────────────────────────────────

class TestParseAmount:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("20000", Decimal("20000")),
            ("₹5,000", Decimal("5000")),
            ("20000 rs", Decimal("20000")),
            ("Rs. 1,50,000", Decimal("150000")),
            ("99.50", Decimal("99.50")),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_amount(text) == expected

    @pytest.mark.parametrize("text", ["", None, "abc", "0", "-50", "1e400", "twenty"])
    def test_invalid(self, text):
        assert parse_amount(text) is None

    def test_upper_limit(self):
        assert parse_amount("100000001") is None
        assert parse_amount("500", max_amount=100) is None


class TestFormatAmount:
    def test_indian_grouping(self):
        assert format_amount(Decimal("150000")) == "₹1,50,000"
        assert format_amount("20000") == "₹20,000"
        assert format_amount(999) == "₹999"

    def test_paise(self):
        assert format_amount(Decimal("1234.5")) == "₹1,234.50"


class TestAmountInWords:
    def test_lakh(self):
        assert amount_in_words(150000) == "Rupees One Lakh Fifty Thousand Only"

    def test_thousands(self):
        assert amount_in_words("20000") == "Rupees Twenty Thousand Only"

    def test_paise(self):
        assert amount_in_words(Decimal("101.25")) == "Rupees One Hundred One and Twenty Five Paise Only"


# ── phones ────────────────────────────────────────────────────────────

class TestPhones:
    def test_ten_digits_get_country_code(self):
        assert normalize_phone("9876543210") == "919876543210"
        assert normalize_phone("98765 43210") == "919876543210"

    def test_full_number_kept(self):
        assert normalize_phone("+91 98765-43210") == "919876543210"
        assert normalize_phone("447911123456") == "447911123456"

    @pytest.mark.parametrize("text", ["12345", "1234567890123456", "", None, "phone"])
    def test_invalid(self, text):
        assert normalize_phone(text) is None

    def test_phones_match_ignores_country_code(self):
        assert phones_match("919876543210", "9876543210")
        assert phones_match("+91 98765 43210", "919876543210")
        assert not phones_match("919876543210", "919876543211")
        assert not phones_match(None, "919876543210")


# ── text fields ───────────────────────────────────────────────────────

class TestTextFields:
    def test_name(self):
        assert validate_name("  Ravi   Kumar ") == "Ravi Kumar"
        assert validate_name("R") is None
        assert validate_name("12345") is None
        assert validate_name("x" * 101) is None

    def test_description(self):
        assert validate_description(" fresh stock ") == "fresh stock"
        assert validate_description("ab", min_length=3) is None
        assert validate_description("x" * 501) is None

    def test_skip(self):
        assert is_skip(IncomingMessage.button("1", "skip"))
        assert is_skip(IncomingMessage.text_message("1", " Skip "))
        assert not is_skip(IncomingMessage.text_message("1", "skip it"))


# ── keyword matching ──────────────────────────────────────────────────

class TestKeywordMatcher:
    def test_normalize(self):
        assert normalize("  Hello   THERE ") == "hello there"
        assert normalize(None) == ""

    def test_short_keywords_need_whole_token(self):
        table = {"customer": ("c", "1"), "other": ("other",)}
        assert match_keyword("c", table) == "customer"
        assert match_keyword("catch", table) is None
        assert match_keyword("option 1 please", table) == "customer"
        assert match_keyword("10", table) is None

    def test_table_order_wins(self):
        # "incorrect" contains "correct"
        assert match_keyword("incorrect", DECISIONS) == "reject"
        assert match_keyword("yes that's correct", DECISIONS) == "confirm"
        assert match_keyword("I don't know this person", DECISIONS) == "unknown"

    def test_fish_seller_is_not_a_shop(self):
        assert match_keyword("fish seller", USER_TYPES) == "fish_seller"
        assert match_keyword("shop owner", USER_TYPES) == "shop"


# ── due dates ─────────────────────────────────────────────────────────

class TestDueDates:
    def test_text_choices(self):
        assert match_keyword("1month", DUE_DATES) == "1month"
        assert match_keyword("2 weeks", DUE_DATES) == "2weeks"
        assert match_keyword("no due date", DUE_DATES) == "none"

    def test_month_end_is_clamped(self):
        assert due_date_for("1month", date(2026, 1, 31)) == date(2026, 2, 28)
        assert due_date_for("6months", date(2026, 8, 31)) == date(2027, 2, 28)

    def test_week_and_none(self):
        assert due_date_for("1week", date(2026, 3, 1)) == date(2026, 3, 8)
        assert due_date_for("none", date(2026, 3, 1)) is None
