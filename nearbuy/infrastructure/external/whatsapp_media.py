# nearbuy/infrastructure/external/whatsapp_media.py
"""
Media handling: pull inbound images from WhatsApp and keep them under
``MEDIA_ROOT`` so they can be served back from ``MEDIA_BASE_URL``.
"""

from __future__ import annotations

import mimetypes
import uuid
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from nearbuy.core.config import settings
from nearbuy.domain.models import MediaResult

GRAPH_BASE = "https://graph.facebook.com"

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/pdf",
}
MAX_MEDIA_BYTES = 10 * 1024 * 1024


def _wa_token() -> str:
    token = settings.WHATSAPP_ACCESS_TOKEN
    if not token:
        raise RuntimeError("WHATSAPP_ACCESS_TOKEN is not set")
    return token


async def get_media_url(media_id: str, http_client: Optional[httpx.AsyncClient] = None) -> tuple[str, Optional[str]]:
    """
    GET /{media_id} -> {"url": "...", "mime_type": "..."}
    """
    url = f"{GRAPH_BASE}/{settings.WHATSAPP_API_VERSION}/{media_id}"
    headers = {"Authorization": f"Bearer {_wa_token()}"}
    if http_client is not None:
        r = await http_client.get(url, headers=headers)
    else:
        async with httpx.AsyncClient(timeout=30) as client:
            r = await client.get(url, headers=headers)
    r.raise_for_status()
    data = r.json()
    media_url = data.get("url")
    if not media_url:
        raise RuntimeError(f"WhatsApp media url not found for media_id={media_id}")
    return media_url, data.get("mime_type")


async def download_media(media_url: str, http_client: Optional[httpx.AsyncClient] = None) -> bytes:
    """
    GET bytes from the returned media URL (still requires Authorization header)
    """
    headers = {"Authorization": f"Bearer {_wa_token()}"}
    if http_client is not None:
        r = await http_client.get(media_url, headers=headers)
    else:
        async with httpx.AsyncClient(timeout=60) as client:
            r = await client.get(media_url, headers=headers)
    r.raise_for_status()
    return r.content


def _extension(mime_type: str) -> str:
    if mime_type == "image/jpeg":
        return ".jpg"
    return mimetypes.guess_extension(mime_type) or ".bin"


class LocalMediaStore:
    """``MediaStore`` backed by a local directory served under ``/media``."""

    def __init__(
        self,
        root: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.root = Path(root or settings.MEDIA_ROOT)
        self.base_url = (base_url or settings.MEDIA_BASE_URL).rstrip("/")
        self._http = http_client

    async def download_and_store(self, media_id: str, folder: str) -> MediaResult:
        if not media_id:
            return MediaResult(success=False, error="missing media id")
        try:
            media_url, mime_type = await get_media_url(media_id, self._http)
            content = await download_media(media_url, self._http)
        except (httpx.HTTPError, RuntimeError) as exc:
            logger.warning("Media {} download failed: {}", media_id, exc)
            return MediaResult(success=False, error=str(exc))
        mime_type = (mime_type or "image/jpeg").split(";")[0].strip()
        return await self.store_bytes(content, folder, f"{uuid.uuid4().hex}{_extension(mime_type)}", mime_type)

    async def store_bytes(self, content: bytes, folder: str, filename: str, mime_type: str) -> MediaResult:
        if mime_type not in ALLOWED_MIME_TYPES:
            return MediaResult(success=False, error=f"unsupported media type {mime_type}", mime_type=mime_type)
        if len(content) > MAX_MEDIA_BYTES:
            return MediaResult(success=False, error="file too large", mime_type=mime_type)

        target_dir = self.root / folder
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            (target_dir / filename).write_bytes(content)
        except OSError as exc:
            logger.error("Could not write media {}/{}: {}", folder, filename, exc)
            return MediaResult(success=False, error=str(exc), mime_type=mime_type)

        url = f"{self.base_url}/{folder}/{filename}"
        logger.info("Stored media {} ({} bytes)", url, len(content))
        return MediaResult(success=True, url=url, mime_type=mime_type)
