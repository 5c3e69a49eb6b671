import ssl

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.config import get_settings

settings = get_settings()

# Hosted Postgres requires SSL; asyncpg needs an ssl.SSLContext
connect_args = {}
db_url = settings.async_database_url
if db_url.startswith("postgresql") and "localhost" not in db_url and "127.0.0.1" not in db_url:
    ssl_ctx = ssl.create_default_context()
    ssl_ctx.check_hostname = False
    ssl_ctx.verify_mode = ssl.CERT_NONE
    connect_args["ssl"] = ssl_ctx

engine = create_async_engine(
    db_url,
    echo=settings.app_debug,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
    connect_args=connect_args,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(exc: Exception) -> bool:
    """True when ``exc`` is a unique-constraint violation rather than any other write failure."""
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNIQUE_VIOLATION_SQLSTATE:
        return True
    message = str(orig)
    return "UNIQUE constraint failed" in message or "duplicate key value" in message
