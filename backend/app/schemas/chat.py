"""
旅游规划对话相关Schema
"""
from typing import List, Optional, Union

from app.schemas.common import CamelModel


class ChatHistoryMessage(CamelModel):
    """前端会话中的一条消息（会话只保存在浏览器端）"""
    sender: str  # user, assistant
    content: str = ""
    is_loading: bool = False
    is_error: bool = False


class ChatRequest(CamelModel):
    """聊天请求：message 为本次输入，messages 为当前会话的历史消息"""
    message: Optional[str] = None
    conversation_id: Optional[Union[str, int]] = None
    messages: Optional[List[ChatHistoryMessage]] = None


class ChatResponse(CamelModel):
    reply: str
    conversation_id: Optional[Union[str, int]] = None


class ExtractionResult(CamelModel):
    """第一阶段信息提取结果"""
    is_complete: bool = False
    destination: Optional[str] = None
    days: Optional[str] = None
    people: Optional[str] = None
    budget: Optional[str] = None
    reply: Optional[str] = None
