# nearbuy/infrastructure/external/whatsapp_client.py
"""
WhatsApp Cloud API sender.

Implements the ``MessageSender`` protocol the flows use:
POST /{PHONE_NUMBER_ID}/messages with a Bearer token.  Titles are cut to the
API limits (button 20, list row 24, row description 72) so a long shop name
never turns a prompt into a 400.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from nearbuy.core.config import settings
from nearbuy.domain.services.pii_masking import mask_phone

GRAPH_BASE = "https://graph.facebook.com"

BUTTON_TITLE_MAX = 20
ROW_TITLE_MAX = 24
ROW_DESCRIPTION_MAX = 72
LIST_BUTTON_MAX = 20
HEADER_MAX = 60
FOOTER_MAX = 60
BODY_MAX = 1024
MAX_BUTTONS = 3


def _clip(value: Optional[str], limit: int) -> str:
    value = value or ""
    return value if len(value) <= limit else value[: limit - 1] + "…"


class WhatsAppClient:
    def __init__(
        self,
        access_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        api_version: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._access_token = access_token if access_token is not None else settings.WHATSAPP_ACCESS_TOKEN
        self._phone_number_id = phone_number_id if phone_number_id is not None else settings.WHATSAPP_PHONE_NUMBER_ID
        self._api_version = api_version or settings.WHATSAPP_API_VERSION
        self._http = http_client

    @property
    def messages_url(self) -> str:
        if not self._phone_number_id:
            raise RuntimeError("WHATSAPP_PHONE_NUMBER_ID is not set")
        return f"{GRAPH_BASE}/{self._api_version}/{self._phone_number_id}/messages"

    def _headers(self) -> dict:
        if not self._access_token:
            raise RuntimeError("WHATSAPP_ACCESS_TOKEN is not set")
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    async def _post(self, to: str, message_type: str, body: dict[str, Any]) -> dict:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: body,
        }
        url = self.messages_url
        headers = self._headers()

        if self._http is not None:
            resp = await self._http.post(url, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=15) as client:
                resp = await client.post(url, json=payload, headers=headers)

        if resp.status_code >= 400:
            logger.error(
                "WA HTTP error {} sending {} to {}: {}",
                resp.status_code,
                message_type,
                mask_phone(to),
                resp.text,
            )
            resp.raise_for_status()

        logger.debug("WA HTTP → {} sent to {}", message_type, mask_phone(to))
        return resp.json() if resp.content else {}

    # ── MessageSender ────────────────────────────────────────

    async def send_text(self, phone: str, body: str) -> None:
        await self._post(phone, "text", {"preview_url": False, "body": body[:4096]})

    async def send_buttons(
        self,
        phone: str,
        body: str,
        buttons: list[dict],
        header: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> None:
        if len(buttons) > MAX_BUTTONS:
            logger.warning("Dropping {} buttons over the limit of {}", len(buttons) - MAX_BUTTONS, MAX_BUTTONS)
        interactive: dict[str, Any] = {
            "type": "button",
            "body": {"text": _clip(body, BODY_MAX)},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": b["id"], "title": _clip(b["title"], BUTTON_TITLE_MAX)}}
                    for b in buttons[:MAX_BUTTONS]
                ]
            },
        }
        if header:
            interactive["header"] = {"type": "text", "text": _clip(header, HEADER_MAX)}
        if footer:
            interactive["footer"] = {"text": _clip(footer, FOOTER_MAX)}
        await self._post(phone, "interactive", interactive)

    async def send_list(
        self,
        phone: str,
        body: str,
        button_label: str,
        sections: list[dict],
        header: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> None:
        wa_sections = []
        for section in sections:
            rows = []
            for row in section.get("rows", []):
                entry = {"id": row["id"], "title": _clip(row["title"], ROW_TITLE_MAX)}
                if row.get("description"):
                    entry["description"] = _clip(row["description"], ROW_DESCRIPTION_MAX)
                rows.append(entry)
            wa_sections.append({"title": _clip(section.get("title"), ROW_TITLE_MAX), "rows": rows})

        interactive: dict[str, Any] = {
            "type": "list",
            "body": {"text": _clip(body, BODY_MAX)},
            "action": {"button": _clip(button_label, LIST_BUTTON_MAX), "sections": wa_sections},
        }
        if header:
            interactive["header"] = {"type": "text", "text": _clip(header, HEADER_MAX)}
        if footer:
            interactive["footer"] = {"text": _clip(footer, FOOTER_MAX)}
        await self._post(phone, "interactive", interactive)

    async def send_image(self, phone: str, url: str, caption: Optional[str] = None) -> None:
        image: dict[str, Any] = {"link": url}
        if caption:
            image["caption"] = caption[:BODY_MAX]
        await self._post(phone, "image", image)

    async def send_document(
        self, phone: str, url: str, filename: Optional[str] = None, caption: Optional[str] = None
    ) -> None:
        document: dict[str, Any] = {"link": url}
        if filename:
            document["filename"] = filename
        if caption:
            document["caption"] = caption[:BODY_MAX]
        await self._post(phone, "document", document)

    async def send_location(
        self,
        phone: str,
        latitude: float,
        longitude: float,
        name: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None:
        location: dict[str, Any] = {"latitude": latitude, "longitude": longitude}
        if name:
            location["name"] = name
        if address:
            location["address"] = address
        await self._post(phone, "location", location)

    async def request_location(self, phone: str, body: str) -> None:
        await self._post(
            phone,
            "interactive",
            {
                "type": "location_request_message",
                "body": {"text": _clip(body, BODY_MAX)},
                "action": {"name": "send_location"},
            },
        )
