"""
Demo Event Seeder

Fills the analytics table with simulated chat sessions so the admin
dashboard has something to show.

Usage:
    python scripts/seed_demo_events.py --sessions 500 --days 60
"""

import argparse
import asyncio

import structlog
from sqlalchemy import insert

from nutritionist.config.logging import configure_logging
from nutritionist.data.generators import SessionEventGenerator
from nutritionist.database.connection import close_database, get_db, init_database
from nutritionist.database.models import AnalyticsEvent

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 1000


async def seed(sessions: int, days: int, seed_value: int) -> int:
    events = SessionEventGenerator(seed=seed_value).generate(sessions=sessions, days=days)
    records = [{**event, "created_at": event["timestamp"]} for event in events]

    await init_database()
    try:
        async with get_db() as db:
            for i in range(0, len(records), CHUNK_SIZE):
                await db.execute(insert(AnalyticsEvent), records[i:i + CHUNK_SIZE])
    finally:
        await close_database()

    logger.info("Demo events inserted", sessions=sessions, events=len(records), days=days)
    return len(records)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo analytics events")
    parser.add_argument("--sessions", type=int, default=200, help="Number of chat sessions")
    parser.add_argument("--days", type=int, default=30, help="Spread sessions over the last N days")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(seed(args.sessions, args.days, args.seed))
