from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from mod_users.core.config import settings


def get_engine(url: Optional[str] = None) -> AsyncEngine:
    """
    One engine for the module database; tenants are schemas inside it,
    selected per client with schema_translate_map.
    """
    return create_async_engine(
        url or settings.DATABASE_URL,
        pool_pre_ping=True,
    )
