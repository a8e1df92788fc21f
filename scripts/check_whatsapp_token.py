# scripts/check_whatsapp_token.py

import asyncio
import os
import sys

# ensure nearbuy is importable
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import httpx
from loguru import logger

from nearbuy.core.config import settings
from nearbuy.core.logging_config import setup_logging


async def main():
    setup_logging()
    if not settings.WHATSAPP_ACCESS_TOKEN:
        logger.error("No WHATSAPP_ACCESS_TOKEN configured")
        return
    if not settings.WHATSAPP_PHONE_NUMBER_ID:
        logger.error("No WHATSAPP_PHONE_NUMBER_ID configured")
        return

    # The phone number node is only readable with a token that can send from it
    url = f"https://graph.facebook.com/{settings.WHATSAPP_API_VERSION}/{settings.WHATSAPP_PHONE_NUMBER_ID}"
    params = {"fields": "display_phone_number,verified_name,quality_rating"}
    headers = {"Authorization": f"Bearer {settings.WHATSAPP_ACCESS_TOKEN}"}

    async with httpx.AsyncClient(timeout=20) as client:
        resp = await client.get(url, params=params, headers=headers)

    if resp.status_code == 200:
        data = resp.json()
        logger.success(
            "WhatsApp token OK for {} ({}), quality={}",
            data.get("display_phone_number"),
            data.get("verified_name"),
            data.get("quality_rating"),
        )
        return

    logger.error("Token check failed: {} - {}", resp.status_code, resp.text)
    try:
        err = resp.json().get("error", {})
    except ValueError:
        err = {}
    if err.get("code") == 190:
        logger.critical("WhatsApp token EXPIRED (code=190). Generate a new token and update .env")
    else:
        logger.error("Token invalid: {}", err)


if __name__ == "__main__":
    asyncio.run(main())
