# nearbuy/domain/services/pii_masking.py
"""PII masking utilities for safe logging and WhatsApp display.

All functions are synchronous string operations.  They never raise on
invalid input -- they return the value unchanged (or empty string) when
the format is unrecognised.
"""

import re

# ---------------------------------------------------------------------------
# Mask character : bullet (•) for user-facing display
# ---------------------------------------------------------------------------
MASK_CHAR = "•"  # bullet •

# ---------------------------------------------------------------------------
# Compiled patterns
# ---------------------------------------------------------------------------

# Phone: optional +91 / 91 prefix, then 10 digits starting with 6-9,
# or any other run of 10-15 digits (international wa_ids)
_PHONE_RE = re.compile(r"(?<!\d)(?:\+?91[-\s]?)?[6-9]\d{9}(?!\d)|(?<!\d)\d{11,15}(?!\d)")

# Email: simple pattern for masking (not validation)
_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")


def mask_phone(phone) -> str:
    """Mask a phone number, showing only last 4 digits.

    Handles bare 10-digit, ``+91``-prefixed, and ``91``-prefixed formats.
    Example: ``9876543210`` -> ``••••••3210``
    """
    if not phone:
        return ""
    digits = re.sub(r"[^0-9]", "", str(phone))
    if len(digits) < 4:
        return MASK_CHAR * len(digits)
    return MASK_CHAR * (len(digits) - 4) + digits[-4:]


def mask_email(email: str) -> str:
    """Mask an email, keeping the first character of the local part.

    Example: ``ravi@example.com`` -> ``r•••@example.com``
    """
    if not email or "@" not in email:
        return email or ""
    local, domain = email.split("@", 1)
    if not local:
        return email
    return local[0] + MASK_CHAR * 3 + "@" + domain


def mask_for_log(text: str) -> str:
    """Mask every phone number and email found in free text."""
    if not text:
        return text or ""
    masked = _PHONE_RE.sub(lambda m: mask_phone(m.group(0)), text)
    masked = _EMAIL_RE.sub(lambda m: mask_email(m.group(0)), masked)
    return masked
