"""
旅游规划服务：两阶段调用大模型（信息提取 -> 规划生成），登录用户附加个性化偏好，
生成成功后在后台记录旅游历史并更新偏好
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import ValidationError
from app.schemas.auth import UserResponse
from app.schemas.chat import ChatHistoryMessage, ExtractionResult
from app.services.llm_service import LLMClient
from app.services.preference_service import PreferenceService

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "你是一个旅游信息提取助手，你的任务是从用户对话中提取旅游相关信息（目的地、人数、天数、预算）。"
    "如果信息不完整，你需要生成一个友好的回复向用户询问缺失的信息。如果信息完整，你需要将这些信息整理成标准格式。"
)

PLANNER_SYSTEM_PROMPT = "你是一个专业的旅游规划助手，擅长根据用户需求提供详细的旅游规划建议。"

CLARIFICATION_REPLY = "抱歉，我无法理解您的旅游需求。请提供目的地、旅游天数、人数和预算信息。"

EXTRACTION_INSTRUCTIONS = """请提取以下信息：
1. 目的地
2. 旅游天数
3. 旅游人数
4. 预算

如果信息完整，请将这些信息整理成以下格式：
{
  "isComplete": true,
  "destination": "目的地",
  "days": "天数",
  "people": "人数",
  "budget": "预算",
  "reply": null
}

如果信息不完整，请将isComplete设为false，并在reply字段中提供向用户询问缺失信息的回复：
{
  "isComplete": false,
  "destination": "已提供的目的地或null",
  "days": "已提供的天数或null",
  "people": "已提供的人数或null",
  "budget": "已提供的预算或null",
  "reply": "向用户询问缺失信息的友好回复"
}"""

PLAN_INSTRUCTIONS = """请提供以下详细信息：
1. 详细的游玩路径和每日行程安排
2. 推荐的景点及其特色
3. 各个景点之间的交通工具和预计时间
4. 住宿酒店推荐（符合预算）
5. 餐饮推荐（当地特色美食）
6. 预算分配建议

请以Markdown格式回复，使用标题、列表和表格等元素使回复更加清晰易读。"""

TRAVEL_FIELDS = ("destination", "days", "people", "budget")
_NULL_LITERALS = {"", "null", "none", "undefined"}
TITLE_MAX_LENGTH = 20


def derive_conversation_title(first_message: str) -> str:
    """会话标题：取第一条用户消息，超过 20 个字符时截断并加省略号

    会话只保存在浏览器端，服务端不调用此函数，供前端或其他客户端生成标题时保持一致的规则。
    """
    text = (first_message or "").strip()
    if len(text) > TITLE_MAX_LENGTH:
        return f"{text[:TITLE_MAX_LENGTH]}..."
    return text


def find_first_json_object(text: str) -> Optional[str]:
    """返回文本中第一个括号配平的 {...} 片段（跳过字符串内的括号）；没有则返回 None"""
    start = text.find("{") if text else -1
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _clean_field(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    if text.lower() in _NULL_LITERALS:
        return None
    return text


def parse_extraction(content: str) -> ExtractionResult:
    """解析信息提取阶段的模型输出；任何异常都视为信息不完整并返回引导用户补充的回复"""
    fallback = ExtractionResult(is_complete=False, reply=CLARIFICATION_REPLY)
    span = find_first_json_object(content)
    if span is None:
        logger.info("信息提取结果中未找到 JSON")
        return fallback
    try:
        data = json.loads(span)
    except json.JSONDecodeError as e:
        logger.warning("解析信息提取结果失败: %s", e)
        return fallback
    if not isinstance(data, dict):
        return fallback

    fields = {name: _clean_field(data.get(name)) for name in TRAVEL_FIELDS}
    flag = data.get("isComplete")
    is_complete = flag is True or (isinstance(flag, str) and flag.strip().lower() == "true")
    reply = _clean_field(data.get("reply"))

    if is_complete and all(fields.values()):
        return ExtractionResult(is_complete=True, reply=None, **fields)
    return ExtractionResult(is_complete=False, reply=reply or CLARIFICATION_REPLY, **fields)


def format_conversation_history(messages: Optional[List[ChatHistoryMessage]], current_message: str) -> str:
    """将历史消息转为 "用户: ... / 助手: ..." 文本；忽略加载中/出错的占位消息，以及末尾与本次输入相同的用户消息"""
    if not messages:
        return ""
    usable = [m for m in messages if not m.is_loading and not m.is_error and m.content]
    if usable and usable[-1].sender == "user" and usable[-1].content.strip() == current_message.strip():
        usable = usable[:-1]
    return "\n".join(f"{'用户' if m.sender == 'user' else '助手'}: {m.content}" for m in usable)


def build_extraction_messages(message: str, history_text: str) -> List[Dict[str, str]]:
    history_part = f"{history_text}\n\n" if history_text else ""
    user_content = (
        f"以下是用户的对话历史和当前消息，请提取旅游相关信息：\n\n"
        f"{history_part}用户: {message}\n\n{EXTRACTION_INSTRUCTIONS}"
    )
    return [
        {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


def _with_unit(value: str, unit: str) -> str:
    return value if value.endswith(unit) else f"{value}{unit}"


def build_plan_prompt(info: ExtractionResult, personalization: str = "") -> str:
    """组装规划阶段的提示词：旅游信息 + 个性化偏好（可选）+ 固定的输出要求"""
    travel_lines = [
        f"目的地: {info.destination}",
        f"旅游时间: {_with_unit(info.days, '天')}",
        f"游玩人数: {_with_unit(info.people, '人')}",
        f"预算: {_with_unit(info.budget, '元')}",
    ]
    parts = [
        "请根据用户提供的以下信息，生成一个详细的旅游规划：",
        "",
        "用户提供的信息：",
        "\n".join(travel_lines),
    ]
    if personalization:
        parts.append(personalization.strip("\n"))
    parts.extend(["", PLAN_INSTRUCTIONS])
    return "\n".join(parts)


@dataclass
class PlanResult:
    reply: str
    conversation_id: Optional[Union[str, int]]
    travel_info: Optional[ExtractionResult] = None  # 仅在生成了旅游规划时有值

    @property
    def plan_generated(self) -> bool:
        return self.travel_info is not None


class PlannerService:
    """旅游规划服务类"""

    def __init__(
        self,
        llm: LLMClient,
        db: Optional[AsyncSession] = None,
        extract_temperature: float = 0.3,
        extract_max_tokens: int = 1000,
        plan_temperature: float = 0.7,
        plan_max_tokens: int = 2000,
        max_weight: float = 5.0,
        top_n: int = 3,
        history_count: int = 3,
    ):
        self.llm = llm
        self.db = db
        self.extract_temperature = extract_temperature
        self.extract_max_tokens = extract_max_tokens
        self.plan_temperature = plan_temperature
        self.plan_max_tokens = plan_max_tokens
        self.max_weight = max_weight
        self.top_n = top_n
        self.history_count = history_count

    async def extract_travel_info(self, message: str, messages: Optional[List[ChatHistoryMessage]] = None) -> ExtractionResult:
        """第一阶段：从对话中提取目的地、天数、人数、预算"""
        history_text = format_conversation_history(messages, message)
        content = await self.llm.complete(
            build_extraction_messages(message, history_text),
            temperature=self.extract_temperature,
            max_tokens=self.extract_max_tokens,
        )
        return parse_extraction(content)

    async def generate_plan(self, info: ExtractionResult, personalization: str = "") -> str:
        """第二阶段：生成旅游规划"""
        return await self.llm.complete(
            [
                {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
                {"role": "user", "content": build_plan_prompt(info, personalization)},
            ],
            temperature=self.plan_temperature,
            max_tokens=self.plan_max_tokens,
        )

    async def _personalization(self, user: Optional[UserResponse]) -> str:
        if user is None or self.db is None:
            return ""
        service = PreferenceService(self.db, max_weight=self.max_weight)
        return await service.generate_personalized_prompt(
            user.id, top_n=self.top_n, history_count=self.history_count
        )

    async def chat(
        self,
        message: Optional[str],
        conversation_id: Optional[Union[str, int]] = None,
        messages: Optional[List[ChatHistoryMessage]] = None,
        user: Optional[UserResponse] = None,
    ) -> PlanResult:
        """处理一轮对话：校验 -> 提取 -> （不完整则直接追问）-> 个性化 -> 生成"""
        if not message or not message.strip():
            raise ValidationError("消息内容不能为空")
        message = message.strip()

        info = await self.extract_travel_info(message, messages)
        if not info.is_complete:
            return PlanResult(reply=info.reply or CLARIFICATION_REPLY, conversation_id=conversation_id)

        personalization = await self._personalization(user)
        reply = await self.generate_plan(info, personalization)
        logger.info(
            "生成旅游规划 user_id=%s destination=%s personalized=%s",
            user.id if user else None,
            info.destination,
            bool(personalization),
        )
        return PlanResult(reply=reply, conversation_id=conversation_id, travel_info=info)


async def record_travel_interaction(
    session_factory: async_sessionmaker,
    user_id: int,
    travel_info: ExtractionResult,
    travel_plan: str,
    max_weight: float = 5.0,
) -> None:
    """后台任务：保存旅游历史并提取偏好。失败只记录日志，不影响已返回的响应"""
    async with session_factory() as db:
        service = PreferenceService(db, max_weight=max_weight)
        try:
            history_id = await service.save_travel_history(user_id, {
                "destination": travel_info.destination,
                "days": travel_info.days,
                "people": travel_info.people,
                "budget": travel_info.budget,
                "travel_plan": travel_plan,
            })
            logger.info("已保存旅游历史 user_id=%s history_id=%s", user_id, history_id)
        except Exception:
            logger.exception("保存旅游历史失败 user_id=%s", user_id)

        try:
            count, _ = await service.extract_preferences_from_travel(user_id, travel_info.model_dump())
            logger.info("已更新用户偏好 user_id=%s count=%s", user_id, count)
        except Exception:
            logger.exception("提取用户偏好失败 user_id=%s", user_id)
