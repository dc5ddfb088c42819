"""Async SQLAlchemy engine & session — supports SQLite and PostgreSQL."""

from sqlalchemy import event, inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from abengine.config import get_settings

settings = get_settings()

# SQLite opens a connection per session; PostgreSQL uses a real pool
if settings.is_sqlite:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args={"check_same_thread": False},
        poolclass=NullPool,
    )
else:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=10,
    )

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@event.listens_for(Base, "init", propagate=True)
def _apply_defaults(target, args, kwargs):
    """Apply scalar Column defaults at Python level right after __init__."""
    try:
        mapper = sa_inspect(type(target))
    except NoInspectionAvailable:
        return
    for col_attr in mapper.column_attrs:
        key = col_attr.key
        if key in kwargs or getattr(target, key, None) is not None:
            continue
        default = col_attr.columns[0].default
        if default is None:
            continue
        if default.is_callable:
            # Column callables are wrapped to accept an execution context
            setattr(target, key, default.arg(None))
        elif default.is_scalar:
            setattr(target, key, default.arg)


async def get_db():
    async with async_session() as session:
        yield session
