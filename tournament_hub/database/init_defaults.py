#!/usr/bin/env python3
"""
Initialize default database values.
This script is run on startup to make sure the site settings row exists.
"""

import asyncio
import logging

from tournament_hub.database import db
from tournament_hub.services import settings_service

logger = logging.getLogger(__name__)


async def init_defaults():
    """Create the site settings row with default values if it is missing."""
    logger.info("Initializing default database values...")

    async with db.get_session_factory()() as session:
        settings = await settings_service.get_full_settings(session)
        logger.info(f"Site settings ready (maintenance_mode={settings['maintenance_mode']})")

    logger.info("Default values initialized")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(init_defaults())
