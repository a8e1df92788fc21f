# tests/test_whatsapp_client.py
"""Cloud API payloads and media storage, over httpx.MockTransport."""

import json
from unittest.mock import patch

import httpx
import pytest

from nearbuy.core.config import settings
from nearbuy.infrastructure.external.whatsapp_client import WhatsAppClient
from nearbuy.infrastructure.external.whatsapp_media import LocalMediaStore

PHONE = "919876500001"


class Recorder:
    """Transport handler that records every request and answers with ``status``."""

    def __init__(self, status=200, payload=None):
        self.requests = []
        self.status = status
        self.payload = payload if payload is not None else {"messages": [{"id": "wamid.out"}]}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.payload)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


def _client(recorder, token="test-token"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return WhatsAppClient(access_token=token, phone_number_id="12345", api_version="v20.0", http_client=http)


# ── 1. Sending ────────────────────────────────────────────────────────

def test_text_goes_to_messages_endpoint(event_loop):
    recorder = Recorder()
    event_loop.run_until_complete(_client(recorder).send_text(PHONE, "Hello"))

    request = recorder.requests[0]
    assert str(request.url) == "https://graph.facebook.com/v20.0/12345/messages"
    assert request.headers["Authorization"] == "Bearer test-token"
    body = recorder.last_json
    assert body["messaging_product"] == "whatsapp"
    assert body["to"] == PHONE
    assert body["type"] == "text"
    assert body["text"]["body"] == "Hello"


def test_buttons_are_clipped_to_api_limits(event_loop):
    recorder = Recorder()
    buttons = [
        {"id": "one", "title": "A very long button title indeed"},
        {"id": "two", "title": "Two"},
        {"id": "three", "title": "Three"},
        {"id": "four", "title": "Four"},
    ]
    event_loop.run_until_complete(_client(recorder).send_buttons(PHONE, "Pick one", buttons, header="NearBuy"))

    interactive = recorder.last_json["interactive"]
    sent = interactive["action"]["buttons"]
    assert [b["reply"]["id"] for b in sent] == ["one", "two", "three"]
    assert len(sent[0]["reply"]["title"]) == 20
    assert sent[0]["reply"]["title"].endswith("…")
    assert interactive["header"] == {"type": "text", "text": "NearBuy"}


def test_list_rows_are_clipped(event_loop):
    recorder = Recorder()
    sections = [
        {
            "title": "Offers",
            "rows": [
                {"id": "offer_1", "title": "Ravi Electronics and Mobiles", "description": "x" * 100},
                {"id": "offer_2", "title": "Short"},
            ],
        }
    ]
    event_loop.run_until_complete(_client(recorder).send_list(PHONE, "Offers nearby", "View", sections))

    rows = recorder.last_json["interactive"]["action"]["sections"][0]["rows"]
    assert len(rows[0]["title"]) == 24
    assert len(rows[0]["description"]) == 72
    assert "description" not in rows[1]


def test_location_request_payload(event_loop):
    recorder = Recorder()
    event_loop.run_until_complete(_client(recorder).request_location(PHONE, "Share your location"))

    interactive = recorder.last_json["interactive"]
    assert interactive["type"] == "location_request_message"
    assert interactive["action"] == {"name": "send_location"}


def test_document_carries_filename(event_loop):
    recorder = Recorder()
    event_loop.run_until_complete(
        _client(recorder).send_document(PHONE, "https://cdn.test/a.pdf", filename="agreement.pdf")
    )

    assert recorder.last_json["document"] == {"link": "https://cdn.test/a.pdf", "filename": "agreement.pdf"}


# ── 2. Failures ───────────────────────────────────────────────────────

def test_missing_token_raises(event_loop):
    recorder = Recorder()

    with pytest.raises(RuntimeError):
        event_loop.run_until_complete(_client(recorder, token="").send_text(PHONE, "Hello"))
    assert recorder.requests == []


def test_http_error_is_raised(event_loop):
    recorder = Recorder(status=400, payload={"error": {"message": "Invalid parameter"}})

    with pytest.raises(httpx.HTTPStatusError):
        event_loop.run_until_complete(_client(recorder).send_text(PHONE, "Hello"))


# ── 3. Media store ────────────────────────────────────────────────────

def _media_handler(mime_type="image/jpeg", content=b"\xff\xd8jpeg"):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "graph.facebook.com":
            return httpx.Response(200, json={"url": "https://lookaside.test/media-1", "mime_type": mime_type})
        return httpx.Response(200, content=content)

    return handler


def test_media_is_downloaded_and_stored(event_loop, tmp_path):
    http = httpx.AsyncClient(transport=httpx.MockTransport(_media_handler()))
    store = LocalMediaStore(root=str(tmp_path), base_url="https://cdn.test/media/", http_client=http)

    with patch.object(settings, "WHATSAPP_ACCESS_TOKEN", "test-token"):
        result = event_loop.run_until_complete(store.download_and_store("media-1", "offers"))

    assert result.success
    assert result.url.startswith("https://cdn.test/media/offers/")
    assert result.url.endswith(".jpg")
    stored = list((tmp_path / "offers").iterdir())
    assert len(stored) == 1
    assert stored[0].read_bytes() == b"\xff\xd8jpeg"


def test_unsupported_media_type_is_refused(event_loop, tmp_path):
    http = httpx.AsyncClient(transport=httpx.MockTransport(_media_handler(mime_type="video/mp4")))
    store = LocalMediaStore(root=str(tmp_path), base_url="https://cdn.test/media", http_client=http)

    with patch.object(settings, "WHATSAPP_ACCESS_TOKEN", "test-token"):
        result = event_loop.run_until_complete(store.download_and_store("media-1", "offers"))

    assert not result.success
    assert not (tmp_path / "offers").exists()


def test_media_lookup_failure_is_reported(event_loop, tmp_path):
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    store = LocalMediaStore(root=str(tmp_path), base_url="https://cdn.test/media", http_client=http)

    with patch.object(settings, "WHATSAPP_ACCESS_TOKEN", "test-token"):
        result = event_loop.run_until_complete(store.download_and_store("media-1", "fish"))

    assert not result.success
    assert result.error
