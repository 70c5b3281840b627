from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from .config import get_settings

settings = get_settings()


def _engine_kwargs() -> dict:
    if settings.is_sqlite:
        # 인메모리 SQLite는 단일 커넥션을 공유해야 테이블이 유지됨
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
            "echo": settings.db_echo,
        }
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "echo": settings.db_echo,
    }


# 비동기 엔진
async_engine = create_async_engine(settings.async_database_url, **_engine_kwargs())
async_session_maker = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def init_db(engine: AsyncEngine = None) -> None:
    """테이블 생성 (존재하지 않을 때만)."""
    import models  # noqa: F401  모델 등록

    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db(engine: AsyncEngine = None) -> None:
    await (engine or async_engine).dispose()


async def get_async_db():
    """비동기 DB 세션 의존성."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
