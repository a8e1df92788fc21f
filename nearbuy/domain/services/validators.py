# nearbuy/domain/services/validators.py
"""Input parsing shared by the flows.

Each parser returns the cleaned value or ``None``; callers turn ``None`` into
a re-prompt of the same step.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from nearbuy.core.config import settings

SKIP_BUTTON_ID = "skip"

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15

_CURRENCY_RE = re.compile(r"(₹|rs\.?|inr|/-)", re.IGNORECASE)


def parse_amount(text: str | None, max_amount: int | None = None) -> Decimal | None:
    """Parse ``"₹20,000"`` / ``"20000 rs"`` / ``"1,50,000.50"`` into a Decimal.

    Rejects non-numeric text, values <= 0 and values above ``max_amount``.
    """
    if not text:
        return None
    limit = settings.MAX_AMOUNT if max_amount is None else max_amount
    cleaned = _CURRENCY_RE.sub("", text)
    cleaned = cleaned.replace(",", "").replace(" ", "").strip()
    if not cleaned:
        return None
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0 or value > limit:
        return None
    return value.quantize(Decimal("0.01")) if value % 1 else value.quantize(Decimal("1"))


def format_amount(value) -> str:
    """Render an amount with Indian digit grouping, e.g. ``₹1,50,000``."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return f"₹{value}"
    whole = int(amount)
    frac = amount - whole
    digits = str(abs(whole))
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups) + "," + tail
    sign = "-" if whole < 0 else ""
    if frac:
        return f"₹{sign}{digits}.{str(abs(frac).quantize(Decimal('0.01')))[2:]}"
    return f"₹{sign}{digits}"


def normalize_phone(text: str | None, country_code: str | None = None) -> str | None:
    """Return the phone as a WhatsApp id (country code + number) or None.

    Accepts 10-15 digits after stripping spaces, dashes and ``+``.  Bare
    10-digit numbers get the default country code prepended.
    """
    if not text:
        return None
    digits = re.sub(r"[^0-9]", "", text)
    if not (PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS):
        return None
    code = settings.DEFAULT_COUNTRY_CODE if country_code is None else country_code
    if len(digits) == 10:
        return code + digits
    return digits


def validate_name(text: str | None) -> str | None:
    if not text:
        return None
    name = " ".join(text.split())
    if not (NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH):
        return None
    if not any(ch.isalpha() for ch in name):
        return None
    return name


def validate_description(text: str | None, min_length: int = 1, max_length: int = DESCRIPTION_MAX_LENGTH) -> str | None:
    if not text:
        return None
    value = text.strip()
    if not (min_length <= len(value) <= max_length):
        return None
    return value


def is_skip(message) -> bool:
    """True for the dedicated skip button or the literal text "skip"."""
    if message.selection_id() == SKIP_BUTTON_ID:
        return True
    text = message.text_content()
    return bool(text) and text.strip().lower() == "skip"


def phones_match(a: str | None, b: str | None) -> bool:
    """Compare two numbers on their last ten digits (ignores country code formatting)."""
    da = re.sub(r"[^0-9]", "", a or "")
    db = re.sub(r"[^0-9]", "", b or "")
    if len(da) < 10 or len(db) < 10:
        return bool(da) and da == db
    return da[-10:] == db[-10:]
