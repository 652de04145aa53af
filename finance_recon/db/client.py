"""Database client using Supabase REST API"""
from typing import Optional
import asyncpg
from supabase import create_client, Client
from finance_recon.config import settings
from finance_recon.exceptions import ConfigurationError


class DatabaseClient:
    def __init__(self):
        self._supabase: Optional[Client] = None
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def supabase(self) -> Client:
        if self._supabase is None:
            self._supabase = create_client(
                settings.supabase_url,
                settings.supabase_service_role_key
            )
        return self._supabase

    async def get_pool(self) -> asyncpg.Pool:
        """Direct Postgres pool, used for schema migrations only"""
        if not settings.database_url:
            raise ConfigurationError("DATABASE_URL not configured")
        if self._pool is None:
            self._pool = await asyncpg.create_pool(settings.database_url, min_size=1, max_size=2)
        return self._pool

    async def close(self):
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


# Global instance
db = DatabaseClient()
