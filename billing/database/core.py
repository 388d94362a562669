from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from billing.config import config


class Base(DeclarativeBase):
    pass


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Async engine for ``url``; server databases get a pool health check."""
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=False, **kwargs)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    # Services return rows they have already committed
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(config.DATABASE_URL)
AsyncSessionLocal = build_sessionmaker(engine)
