# nearbuy/domain/services/agreement_pdf.py
"""
Generate the confirmed-agreement PDF.
Uses ReportLab for PDF generation.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime
from decimal import Decimal

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from nearbuy.domain.models import AgreementRecord

logger = logging.getLogger("nearbuy.agreement_pdf")

_ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten",
    "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen", "Seventeen",
    "Eighteen", "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

PURPOSE_LABELS = {
    "loan": "Loan",
    "advance": "Advance Payment",
    "deposit": "Deposit",
    "business": "Business Payment",
    "personal": "Personal",
    "other": "Other",
}


def _two_digits(n: int) -> str:
    if n < 20:
        return _ONES[n]
    return (_TENS[n // 10] + " " + _ONES[n % 10]).strip()


def _three_digits(n: int) -> str:
    hundreds, rest = divmod(n, 100)
    parts = []
    if hundreds:
        parts.append(f"{_ONES[hundreds]} Hundred")
    if rest:
        parts.append(_two_digits(rest))
    return " ".join(parts)


def amount_in_words(amount) -> str:
    """Indian numbering: 150000 -> "Rupees One Lakh Fifty Thousand Only"."""
    value = Decimal(str(amount))
    rupees = int(value)
    paise = int((value - rupees) * 100)
    if rupees == 0:
        words = "Zero"
    else:
        crore, rem = divmod(rupees, 10_000_000)
        lakh, rem = divmod(rem, 100_000)
        thousand, rem = divmod(rem, 1000)
        parts = []
        if crore:
            parts.append(f"{_three_digits(crore % 1000)} Crore")
        if lakh:
            parts.append(f"{_two_digits(lakh)} Lakh")
        if thousand:
            parts.append(f"{_two_digits(thousand)} Thousand")
        if rem:
            parts.append(_three_digits(rem))
        words = " ".join(parts)
    text = f"Rupees {words}"
    if paise:
        text += f" and {_two_digits(paise)} Paise"
    return text + " Only"


def _fmt_amount(value) -> str:
    try:
        return f"Rs. {Decimal(str(value)):,.2f}"
    except (ArithmeticError, ValueError):
        return str(value)


def build_agreement_pdf(agreement: AgreementRecord, confirmed_at: datetime | None = None) -> bytes:
    """
    Render a one-page agreement record.

    The creditor is whoever handed over the money: the creator when the
    direction is ``giving``, otherwise the counterparty.
    """
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
        title=f"Agreement {agreement.agreement_number}",
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "AgreementTitle",
        parent=styles["Heading1"],
        fontSize=16,
        alignment=1,
        spaceAfter=6,
    )
    subtitle_style = ParagraphStyle(
        "AgreementSubtitle",
        parent=styles["Normal"],
        fontSize=9,
        alignment=1,
        textColor=colors.grey,
        spaceAfter=16,
    )
    body_style = ParagraphStyle("Body", parent=styles["Normal"], fontSize=10, leading=14)
    note_style = ParagraphStyle("Note", parent=styles["Normal"], fontSize=8, textColor=colors.grey, leading=11)

    if agreement.direction == "giving":
        creditor = (agreement.creator_name, agreement.creator_phone)
        debtor = (agreement.counterparty_name, agreement.counterparty_phone)
    else:
        creditor = (agreement.counterparty_name, agreement.counterparty_phone)
        debtor = (agreement.creator_name, agreement.creator_phone)

    elements = [
        Paragraph("DIGITAL AGREEMENT RECORD", title_style),
        Paragraph(
            f"Ref {agreement.agreement_number} · Generated on {datetime.now().strftime('%d-%b-%Y %H:%M')}",
            subtitle_style,
        ),
    ]

    due = agreement.due_date.strftime("%d-%b-%Y") if agreement.due_date else "No fixed date"
    created = agreement.created_at.strftime("%d-%b-%Y %H:%M") if agreement.created_at else "-"
    confirmed = confirmed_at.strftime("%d-%b-%Y %H:%M") if confirmed_at else "-"
    rows = [
        ["Amount", _fmt_amount(agreement.amount)],
        ["In words", amount_in_words(agreement.amount)],
        ["Given by", f"{creditor[0]} (+{creditor[1]})"],
        ["Received by", f"{debtor[0]} (+{debtor[1]})"],
        ["Purpose", PURPOSE_LABELS.get(agreement.purpose, agreement.purpose)],
        ["Description", agreement.description or "-"],
        ["Due date", due],
        ["Created", created],
        ["Confirmed", confirmed],
        ["Status", agreement.status.title()],
    ]
    table = Table(
        [[label, Paragraph(str(value), body_style)] for label, value in rows],
        colWidths=[40 * mm, 130 * mm],
    )
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (0, -1), colors.Color(0.95, 0.95, 0.95)),
                ("TEXTCOLOR", (0, 0), (0, -1), colors.grey),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.Color(0.8, 0.8, 0.8)),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ("LEFTPADDING", (0, 0), (-1, -1), 8),
            ]
        )
    )
    elements.append(table)
    elements.append(Spacer(1, 18))
    elements.append(
        Paragraph(
            "Both parties confirmed this record on WhatsApp through NearBuy. "
            "This document is a record of the confirmation and is not a stamped legal instrument.",
            note_style,
        )
    )

    doc.build(elements)
    pdf_bytes = buf.getvalue()
    buf.close()
    logger.info("Agreement PDF built for %s (%d bytes)", agreement.agreement_number, len(pdf_bytes))
    return pdf_bytes
