# libs/db.py
"""
Async PostgreSQL engine and session factory for the SQL store backend.

Nothing connects on import; the service calls ``create_session_factory`` only
when STORE_BACKEND=sql.
"""

import logging
import os
from typing import Mapping, Optional
from urllib.parse import quote_plus

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from models.base import SCHEMA, Base

logger = logging.getLogger(__name__)


def database_url(env: Mapping[str, str] = os.environ) -> str:
    """
    Resolve the database URL.

    DATABASE_URL wins; otherwise the URL is assembled from the individual
    DATABASE_HOST/PORT/USER/PASSWORD/NAME variables (Kubernetes style).
    """
    if env.get("DATABASE_URL"):
        return env["DATABASE_URL"]

    host = env.get("DATABASE_HOST", "127.0.0.1")
    port = env.get("DATABASE_PORT", "5432")
    user = env.get("DATABASE_USER", "fleet")
    password = env.get("DATABASE_PASSWORD", "")
    name = env.get("DATABASE_NAME", "fleet")

    # URL encode password if it contains special characters
    password = quote_plus(password) if password else ""
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


def create_session_factory(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(
        url or database_url(),
        echo=False,  # flip to True to log SQL
        pool_pre_ping=True,
    )
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create the fleet schema and tables if they do not exist yet."""
    # register every table on Base.metadata
    import models.emergency  # noqa: F401
    import models.service  # noqa: F401
    import models.vehicle  # noqa: F401

    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database schema '{SCHEMA}' ready")
