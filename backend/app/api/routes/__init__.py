"""
API 路由
"""
from fastapi import APIRouter
from app.api.routes import auth, preferences, chat

api_router = APIRouter()

# 注册子路由
api_router.include_router(auth.router, prefix="/auth", tags=["认证"])
api_router.include_router(preferences.router, prefix="/preferences", tags=["偏好"])
api_router.include_router(chat.router, tags=["旅游规划"])
