"""Database migration runner"""
import asyncio
import os
from finance_recon.db.client import db
from finance_recon.utils.logging import get_logger

logger = get_logger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "../..", "schema.sql")


async def run_migrations(schema_path: str = SCHEMA_PATH):
    """Apply schema.sql; every statement in it is idempotent"""
    if not os.path.exists(schema_path):
        logger.error("Schema file not found", path=schema_path)
        return

    with open(schema_path, 'r') as f:
        schema_sql = f.read()

    try:
        pool = await db.get_pool()
        async with pool.acquire() as conn:
            await conn.execute(schema_sql)
        logger.info("Database migration completed successfully")
    except Exception as e:
        logger.error("Migration failed", error=str(e))
        raise
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(run_migrations())
