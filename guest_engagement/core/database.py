import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from guest_engagement.config import get_settings
from guest_engagement.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


def fix_hosted_postgres_url(url: str) -> tuple[str, dict]:
    """
    Fix a hosted Postgres connection URL for asyncpg compatibility.

    Hosted providers (Supabase pooler, Neon) include params like sslmode and
    pgbouncer that asyncpg doesn't accept. We strip them and handle SSL via
    connect_args.

    - For hosted databases: Use SSL with default context
    - For local dev (localhost/127.0.0.1/db) and SQLite: No SSL
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}

    params = parse_qs(parsed.query)

    # Remove unsupported asyncpg params
    unsupported = ["sslmode", "channel_binding", "options", "pgbouncer"]
    for param in unsupported:
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    is_local = hostname in ("localhost", "127.0.0.1", "db")

    if is_local:
        return clean_url, {}
    else:
        ssl_context = ssl.create_default_context()
        # Transaction-mode poolers reject named prepared statements
        return clean_url, {"ssl": ssl_context, "statement_cache_size": 0}


clean_url, connect_args = fix_hosted_postgres_url(settings.database_url)

_pool_kwargs: dict = {}
if not clean_url.startswith("sqlite"):
    _pool_kwargs = {"pool_size": 5, "max_overflow": 10, "pool_recycle": 280}

engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    pool_pre_ping=True,
    connect_args=connect_args,
    **_pool_kwargs,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise
