"""
Create the engine's bookkeeping tables.

Synced data tables are created per connector on first load.

Usage:
    python scripts/init_db.py
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import build_engine, create_bookkeeping_tables
from core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


async def init_database():
    engine = build_engine()
    try:
        await create_bookkeeping_tables(engine)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
