"""
Script to create all database tables.

This script creates all tables defined in the models.
Run this after starting PostgreSQL with Docker.
"""
import asyncio
from pyra_engine.database import engine
from pyra_engine.logging_config import logger
from pyra_engine.models.base import Base
# Import all models to register them with Base
from pyra_engine.models.automation import AutomationRule, AutomationLog  # noqa: F401
from pyra_engine.models.webhook import Webhook, WebhookDelivery  # noqa: F401


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("tables_created", tables=sorted(Base.metadata.tables))


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("tables_dropped")


async def main():
    """Main entry point."""
    await create_all_tables()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
