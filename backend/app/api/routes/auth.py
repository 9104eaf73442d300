"""
认证相关API
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, status

from app.api.deps import get_auth_service, get_current_user
from app.core.exceptions import AppError, AuthError, UnauthenticatedError, ValidationError
from app.schemas.auth import (
    AuthResponse,
    CurrentUserResponse,
    LoginRequest,
    RefreshResponse,
    RegisterRequest,
    UserResponse,
    VerifyTokenRequest,
)
from app.services.auth_service import AuthService

router = APIRouter()


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    """从 Authorization 头中取出 Bearer 令牌"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """用户注册"""
    user, token = await auth_service.register(body.username, body.email, body.password)
    return AuthResponse(message="注册成功", user=user, token=token)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """用户登录（用户名或邮箱）"""
    user, token = await auth_service.login(body.username, body.password)
    return AuthResponse(message="登录成功", user=user, token=token)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    authorization: Optional[str] = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
):
    """刷新令牌：旧令牌不作废，直到自然过期"""
    token = _bearer_token(authorization)
    if not token:
        raise UnauthenticatedError("令牌缺失")
    try:
        user, new_token = await auth_service.refresh_token(token)
    except AppError as e:
        raise AuthError("令牌刷新失败") from e
    return RefreshResponse(token=new_token, user=user)


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(current_user: UserResponse = Depends(get_current_user)):
    """获取当前用户信息"""
    return CurrentUserResponse(user=current_user)


@router.post("/verify", response_model=CurrentUserResponse)
async def verify(
    body: VerifyTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """验证令牌"""
    if not body.token:
        raise ValidationError("令牌缺失")
    try:
        user = await auth_service.verify_token(body.token)
    except AppError as e:
        raise AuthError("令牌无效或已过期") from e
    return CurrentUserResponse(user=user)
