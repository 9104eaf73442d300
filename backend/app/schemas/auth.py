"""
认证相关Schema
"""
from pydantic import BaseModel
from typing import Optional

from app.schemas.common import SuccessResponse


class RegisterRequest(BaseModel):
    """用户注册（字段校验在 AuthService 中完成，以便返回统一的中文提示）"""
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """用户登录：username 可以是用户名或邮箱"""
    username: Optional[str] = None
    password: Optional[str] = None


class VerifyTokenRequest(BaseModel):
    token: Optional[str] = None


class UserResponse(BaseModel):
    """用户响应（不包含密码哈希）"""
    id: int
    username: str
    email: str

    class Config:
        from_attributes = True


class AuthResponse(SuccessResponse):
    """注册/登录响应"""
    user: UserResponse
    token: str


class RefreshResponse(SuccessResponse):
    token: str
    user: UserResponse


class CurrentUserResponse(SuccessResponse):
    user: UserResponse
