"""
健康检查：数据库连通性、大模型配置
"""
import logging
from typing import Optional, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.config import settings

logger = logging.getLogger(__name__)


async def check_db(async_engine: Optional[AsyncEngine] = None) -> Tuple[bool, str]:
    """执行 SELECT 1；默认使用应用的全局引擎"""
    if async_engine is None:
        from app.core.database import engine as async_engine
    try:
        async with async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("数据库健康检查失败: %s", e)
        return False, str(e)
    return True, "ok"


def check_llm() -> Tuple[bool, str]:
    """只检查大模型 API 密钥是否已配置，不发起真实调用"""
    if not settings.LLM_API_KEY.strip():
        return False, "LLM_API_KEY 未配置"
    return True, f"{settings.LLM_MODEL} @ {settings.LLM_BASE_URL}"
