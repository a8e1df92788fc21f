# scripts/reset_db.py

import asyncio
import os
import sys

from loguru import logger

# Ensure project root (the folder containing 'nearbuy') is on sys.path
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.append(PROJECT_ROOT)

from nearbuy.core.db import AsyncSessionLocal, engine  # noqa: E402
from nearbuy.infrastructure.db.base import Base  # noqa: E402
from nearbuy.infrastructure.db.services import SqlFishService  # noqa: E402


async def reset_db():
    logger.info("Resetting schema (drop_all + create_all)...")

    async with engine.begin() as conn:
        logger.info("Dropping all tables...")
        await conn.run_sync(Base.metadata.drop_all)

        logger.info("Creating all tables from current models...")
        await conn.run_sync(Base.metadata.create_all)

    await SqlFishService(AsyncSessionLocal).seed_fish_types()
    await engine.dispose()
    logger.success("DB reset complete: tables recreated and fish types seeded.")


if __name__ == "__main__":
    asyncio.run(reset_db())
