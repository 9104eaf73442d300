"""
数据库连接：SQLAlchemy 异步引擎、会话工厂与 FastAPI 依赖
"""
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from app.core.config import settings

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite 默认不执行外键约束，删除用户时需要级联删除偏好与历史
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """根据连接串创建异步引擎；SQLite 内存库使用 StaticPool 共享同一连接"""
    url = make_url(database_url)
    kwargs = {"echo": echo}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if not url.database or url.database == ":memory:":
            kwargs["poolclass"] = StaticPool
    async_engine = create_async_engine(database_url, **kwargs)
    if async_engine.dialect.name == "sqlite":
        event.listen(async_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return async_engine


def build_session_factory(async_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
async_session_factory = build_session_factory(engine)


def ensure_sqlite_directory(database_url: str) -> None:
    """SQLite 文件库：确保数据目录存在"""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


async def init_db(async_engine: AsyncEngine = engine) -> None:
    """创建数据库表"""
    import app.models  # noqa: F401  注册所有模型

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """请求级数据库会话"""
    async with async_session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker:
    """后台任务使用的会话工厂（请求结束后仍需独立会话写库）"""
    return async_session_factory
