"""
通用依赖：服务构造、Bearer 令牌认证（必需/可选）
"""
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import AppError, ForbiddenError, UnauthenticatedError
from app.schemas.auth import UserResponse
from app.services.auth_service import AuthService
from app.services.llm_service import LLMClient, get_llm_client
from app.services.planner_service import PlannerService
from app.services.preference_service import PreferenceService

logger = logging.getLogger(__name__)

# auto_error=False：缺少令牌时由下面的依赖决定返回 401 还是匿名放行
bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(db: AsyncSession = Depends(get_db)) -> AuthService:
    return AuthService(
        db,
        secret_key=settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        expire_minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES,
        bcrypt_rounds=settings.BCRYPT_ROUNDS,
        password_min_length=settings.PASSWORD_MIN_LENGTH,
    )


def get_preference_service(db: AsyncSession = Depends(get_db)) -> PreferenceService:
    return PreferenceService(db, max_weight=settings.PREFERENCE_MAX_WEIGHT)


def get_planner_service(
    db: AsyncSession = Depends(get_db),
    llm: LLMClient = Depends(get_llm_client),
) -> PlannerService:
    return PlannerService(
        llm,
        db=db,
        extract_temperature=settings.LLM_EXTRACT_TEMPERATURE,
        extract_max_tokens=settings.LLM_EXTRACT_MAX_TOKENS,
        plan_temperature=settings.LLM_PLAN_TEMPERATURE,
        plan_max_tokens=settings.LLM_PLAN_MAX_TOKENS,
        max_weight=settings.PREFERENCE_MAX_WEIGHT,
        top_n=settings.PREFERENCE_TOP_N,
        history_count=settings.PERSONALIZED_HISTORY_COUNT,
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """必需认证：缺少令牌返回 401，令牌无效/过期或用户已删除返回 403"""
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("访问令牌缺失")
    try:
        return await auth_service.verify_token(credentials.credentials)
    except AppError as e:
        raise ForbiddenError(e.message) from e


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[UserResponse]:
    """可选认证：令牌有效时返回用户，否则匿名继续（不返回错误）"""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return await auth_service.verify_token(credentials.credentials)
    except AppError as e:
        logger.debug("可选认证未通过，按匿名处理: %s", e.message)
    except Exception:
        logger.warning("可选认证出错，按匿名处理", exc_info=True)
    return None
