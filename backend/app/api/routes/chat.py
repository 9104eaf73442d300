"""
旅游规划对话API（可选登录：登录用户获得个性化规划，并记录历史与偏好）
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.deps import get_optional_user, get_planner_service
from app.core.config import settings
from app.core.database import get_session_factory
from app.schemas.auth import UserResponse
from app.schemas.chat import ChatRequest, ChatResponse
from app.services.planner_service import PlannerService, record_travel_interaction

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    background_tasks: BackgroundTasks,
    current_user: Optional[UserResponse] = Depends(get_optional_user),
    planner: PlannerService = Depends(get_planner_service),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """发送消息：信息不完整时返回追问，完整时返回旅游规划"""
    result = await planner.chat(
        message=body.message,
        conversation_id=body.conversation_id,
        messages=body.messages,
        user=current_user,
    )
    if current_user is not None and result.plan_generated:
        # 响应返回后再写库，失败只记日志
        background_tasks.add_task(
            record_travel_interaction,
            session_factory,
            current_user.id,
            result.travel_info,
            result.reply,
            settings.PREFERENCE_MAX_WEIGHT,
        )
    return ChatResponse(reply=result.reply, conversation_id=result.conversation_id)
