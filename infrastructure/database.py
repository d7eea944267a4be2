"""
数据库配置和连接管理
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool, Pool

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    return url.set(drivername=driver_map[drivername]).render_as_string(hide_password=False)


def build_engine(database_url: str, *, echo: bool = False, poolclass: Optional[type[Pool]] = None) -> AsyncEngine:
    """创建异步引擎；SQLite 与自定义连接池不接受连接池大小参数"""
    async_url = _build_async_url(database_url)
    kwargs = {"echo": echo, "future": True}
    if poolclass is not None:
        kwargs["poolclass"] = poolclass
    elif not async_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(async_url, **kwargs)


engine = build_engine(settings.database.url, echo=settings.database.echo)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


@asynccontextmanager
async def task_session_factory(database_url: Optional[str] = None) -> AsyncIterator[async_sessionmaker]:
    """
    为 Celery 任务的单次 asyncio.run 创建独立引擎

    asyncpg 连接绑定创建它的事件循环，任务每次运行都是新循环，
    因此不复用模块级连接池：使用 NullPool，退出时释放引擎。
    """
    task_engine = build_engine(
        database_url or settings.database.url,
        echo=settings.database.echo,
        poolclass=NullPool,
    )
    try:
        yield async_sessionmaker(bind=task_engine, expire_on_commit=False)
    finally:
        await task_engine.dispose()


async def create_tables():
    """
    创建所有表

    仅用于本地开发/测试，生产环境使用 Alembic 迁移
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

