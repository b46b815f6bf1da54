
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from knowledge_hub.core.config import get_settings

settings = get_settings()


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Postgres (asyncpg) khi deploy; SQLite (aiosqlite) khi chạy local không có DB."""
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url, echo=echo, connect_args={"check_same_thread": False})
    # Kết nối pool có thể bị DB đóng khi idle -> ping trước khi dùng
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = create_engine_for(settings.DATABASE_URL)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session


async def init_models(bind: AsyncEngine = engine):
    """Tạo extension vector (Postgres) và các bảng nếu chưa có"""
    # Import để đăng ký model vào Base.metadata
    from knowledge_hub.models import knowledge  # noqa: F401

    async with bind.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
