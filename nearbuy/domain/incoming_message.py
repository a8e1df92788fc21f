# nearbuy/domain/incoming_message.py
"""
Normalized inbound WhatsApp message.

``IncomingMessage.from_webhook`` turns one raw Cloud API message object into a
flow-agnostic value with a ``kind`` and a handful of accessors.  It never
raises: anything it cannot classify (reactions, stickers, audio, malformed
payloads) comes out as ``MessageKind.UNSUPPORTED`` and every flow treats that
as invalid input for the current step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator


class MessageKind(str, Enum):
    TEXT = "text"
    BUTTON_REPLY = "button_reply"
    LIST_REPLY = "list_reply"
    LOCATION = "location"
    IMAGE = "image"
    DOCUMENT = "document"
    UNSUPPORTED = "unsupported"


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class IncomingMessage:
    phone: str
    kind: MessageKind
    message_id: str | None = None
    timestamp: str | None = None
    contact_name: str | None = None
    text: str | None = None
    selection: str | None = None
    selection_title: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    location_name: str | None = None
    location_address: str | None = None
    media: str | None = None
    mime_type: str | None = None
    caption: str | None = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def from_webhook(cls, message: Any, contact_name: str | None = None) -> "IncomingMessage":
        msg = _as_dict(message)
        base = dict(
            phone=_as_str(msg.get("from")) or "",
            message_id=_as_str(msg.get("id")),
            timestamp=_as_str(msg.get("timestamp")),
            contact_name=contact_name,
            raw=msg,
        )
        msg_type = msg.get("type")

        if msg_type == "text":
            body = _as_str(_as_dict(msg.get("text")).get("body"))
            if body is None:
                return cls(kind=MessageKind.UNSUPPORTED, **base)
            return cls(kind=MessageKind.TEXT, text=body, **base)

        if msg_type == "interactive":
            interactive = _as_dict(msg.get("interactive"))
            sub_type = interactive.get("type")
            if sub_type in ("button_reply", "list_reply"):
                reply = _as_dict(interactive.get(sub_type))
                reply_id = _as_str(reply.get("id"))
                if not reply_id:
                    return cls(kind=MessageKind.UNSUPPORTED, **base)
                kind = MessageKind.BUTTON_REPLY if sub_type == "button_reply" else MessageKind.LIST_REPLY
                return cls(
                    kind=kind,
                    selection=reply_id,
                    selection_title=_as_str(reply.get("title")),
                    **base,
                )
            return cls(kind=MessageKind.UNSUPPORTED, **base)

        if msg_type == "button":
            # Quick-reply button on a template message
            button = _as_dict(msg.get("button"))
            payload = _as_str(button.get("payload")) or _as_str(button.get("text"))
            if not payload:
                return cls(kind=MessageKind.UNSUPPORTED, **base)
            return cls(
                kind=MessageKind.BUTTON_REPLY,
                selection=payload,
                selection_title=_as_str(button.get("text")),
                **base,
            )

        if msg_type == "location":
            loc = _as_dict(msg.get("location"))
            lat = _as_float(loc.get("latitude"))
            lng = _as_float(loc.get("longitude"))
            if lat is None or lng is None or not (-90 <= lat <= 90 and -180 <= lng <= 180):
                return cls(kind=MessageKind.UNSUPPORTED, **base)
            return cls(
                kind=MessageKind.LOCATION,
                latitude=lat,
                longitude=lng,
                location_name=_as_str(loc.get("name")),
                location_address=_as_str(loc.get("address")),
                **base,
            )

        if msg_type in ("image", "document"):
            media = _as_dict(msg.get(msg_type))
            media_id = _as_str(media.get("id"))
            if not media_id:
                return cls(kind=MessageKind.UNSUPPORTED, **base)
            return cls(
                kind=MessageKind.IMAGE if msg_type == "image" else MessageKind.DOCUMENT,
                media=media_id,
                mime_type=_as_str(media.get("mime_type")),
                caption=_as_str(media.get("caption")),
                **base,
            )

        return cls(kind=MessageKind.UNSUPPORTED, **base)

    @classmethod
    def text_message(cls, phone: str, body: str) -> "IncomingMessage":
        return cls(phone=phone, kind=MessageKind.TEXT, text=body)

    @classmethod
    def button(cls, phone: str, selection_id: str, title: str | None = None) -> "IncomingMessage":
        return cls(phone=phone, kind=MessageKind.BUTTON_REPLY, selection=selection_id, selection_title=title)

    # ── Accessors ─────────────────────────────────────────────

    def text_content(self) -> str | None:
        if self.kind == MessageKind.TEXT:
            return self.text
        return None

    def selection_id(self) -> str | None:
        if self.kind in (MessageKind.BUTTON_REPLY, MessageKind.LIST_REPLY):
            return self.selection
        return None

    def coordinates(self) -> dict | None:
        if self.kind == MessageKind.LOCATION:
            return {"lat": self.latitude, "lng": self.longitude}
        return None

    def media_id(self) -> str | None:
        if self.kind in (MessageKind.IMAGE, MessageKind.DOCUMENT):
            return self.media
        return None

    @property
    def is_text(self) -> bool:
        return self.kind == MessageKind.TEXT

    @property
    def is_interactive(self) -> bool:
        return self.kind in (MessageKind.BUTTON_REPLY, MessageKind.LIST_REPLY)

    @property
    def is_location(self) -> bool:
        return self.kind == MessageKind.LOCATION

    @property
    def is_image(self) -> bool:
        return self.kind == MessageKind.IMAGE


def iter_webhook_messages(body: Any) -> Iterator[IncomingMessage]:
    """Yield every inbound message in a webhook envelope.

    Status callbacks (sent / delivered / read) carry no ``messages`` and are
    skipped.  Malformed envelopes yield nothing.
    """
    for entry in _iter_dicts(_as_dict(body).get("entry")):
        for change in _iter_dicts(entry.get("changes")):
            value = _as_dict(change.get("value"))
            names = {}
            for contact in _iter_dicts(value.get("contacts")):
                wa_id = _as_str(contact.get("wa_id"))
                if wa_id:
                    names[wa_id] = _as_str(_as_dict(contact.get("profile")).get("name"))
            for raw in _iter_dicts(value.get("messages")):
                message = IncomingMessage.from_webhook(raw, names.get(_as_str(raw.get("from")) or ""))
                if message.phone:
                    yield message


def _iter_dicts(value: Any) -> Iterator[dict]:
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict):
                yield item
