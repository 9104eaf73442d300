"""
偏好服务：偏好的存储（权重累加，上限 5.0）、按旅游信息推导偏好、旅游历史与个性化提示
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InternalError, ValidationError
from app.models.preference import TravelHistory, UserPreference
from app.schemas.preference import PreferenceSaveResult, TravelHistoryItem, TravelInfo, TravelHistoryCreate

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1.0
MAX_WEIGHT = 5.0

PREFERENCE_DESTINATION = "destination"
PREFERENCE_BUDGET = "budget_range"
PREFERENCE_DURATION = "duration_range"
PREFERENCE_GROUP_SIZE = "group_size"

# 个性化提示中各偏好类型的展示名称
PREFERENCE_LABELS = {
    PREFERENCE_DESTINATION: "偏爱目的地",
    PREFERENCE_BUDGET: "预算偏好",
    PREFERENCE_DURATION: "旅行时长偏好",
    PREFERENCE_GROUP_SIZE: "旅行人数偏好",
}

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def parse_number(value: Any) -> Optional[float]:
    """宽松解析数字：支持 8000、"8000"、"8,000元"、"7天" 等；无法解析返回 None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER_RE.search(str(value).replace(",", "").replace("，", ""))
    if not match:
        return None
    return float(match.group())


def _format_number(value: float) -> str:
    """整数值去掉小数部分，例如 2.0 显示为 2"""
    return str(int(value)) if float(value).is_integer() else str(value)


def budget_tier(budget: float) -> str:
    """预算档位：[0,1000) 经济型，[1000,3000) 中等，[3000,8000) 高端，其余奢华"""
    if budget < 1000:
        return "经济型"
    if budget < 3000:
        return "中等"
    if budget < 8000:
        return "高端"
    return "奢华"


def duration_tier(days: int) -> str:
    if days <= 3:
        return "短途"
    if days <= 7:
        return "中途"
    return "长途"


def group_size_tier(people: int) -> str:
    if people == 1:
        return "独自旅行"
    if people == 2:
        return "双人旅行"
    if people <= 4:
        return "小团体"
    return "大团体"


def _as_dict(data: Union[Dict[str, Any], TravelInfo, TravelHistoryCreate, None]) -> Dict[str, Any]:
    if data is None:
        return {}
    if hasattr(data, "model_dump"):
        return data.model_dump()
    return dict(data)


def derive_travel_preferences(travel_info: Union[Dict[str, Any], TravelInfo]) -> List[Tuple[str, str]]:
    """从旅游信息推导偏好 (类型, 值)，缺失或无法解析的字段跳过"""
    info = _as_dict(travel_info)
    derived: List[Tuple[str, str]] = []

    destination = info.get("destination")
    if isinstance(destination, str) and destination.strip():
        derived.append((PREFERENCE_DESTINATION, destination.strip()))

    budget = parse_number(info.get("budget"))
    if budget is not None and budget >= 0:
        derived.append((PREFERENCE_BUDGET, budget_tier(budget)))

    days = parse_number(info.get("days"))
    if days is not None and int(days) > 0:
        derived.append((PREFERENCE_DURATION, duration_tier(int(days))))

    people = parse_number(info.get("people"))
    if people is not None and int(people) > 0:
        derived.append((PREFERENCE_GROUP_SIZE, group_size_tier(int(people))))

    return derived


class PreferenceService:
    """偏好服务类"""

    def __init__(self, db: AsyncSession, max_weight: float = MAX_WEIGHT):
        self.db = db
        self.max_weight = max_weight

    def _upsert_dialect(self):
        """返回 (insert 构造器, 取较小值函数)；SQLite 的双参数 min 与 PostgreSQL 的 least 等价"""
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert, func.least
        if dialect == "sqlite":
            return sqlite_insert, func.min
        raise InternalError(f"不支持的数据库类型: {dialect}")

    async def save_preference(
        self,
        user_id: int,
        preference_type: Optional[str],
        preference_value: Optional[str],
        weight: Optional[float] = DEFAULT_WEIGHT,
    ) -> PreferenceSaveResult:
        """保存偏好：不存在则插入，已存在则 weight = min(weight + 新权重, 上限)，单条语句原子完成"""
        preference_type = (preference_type or "").strip()
        preference_value = (preference_value or "").strip()
        if not preference_type or not preference_value:
            raise ValidationError("偏好类型和值都是必填项")
        if weight is None:
            weight = DEFAULT_WEIGHT
        if weight <= 0:
            raise ValidationError("偏好权重必须大于0")

        insert, least = self._upsert_dialect()
        stmt = insert(UserPreference).values(
            user_id=user_id,
            preference_type=preference_type,
            preference_value=preference_value,
            weight=min(float(weight), self.max_weight),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "preference_type", "preference_value"],
            set_={"weight": least(UserPreference.weight + stmt.excluded.weight, self.max_weight)},
        ).returning(UserPreference.id, UserPreference.weight)

        try:
            row = (await self.db.execute(stmt)).one()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("保存偏好失败 user_id=%s type=%s: %s", user_id, preference_type, e)
            raise InternalError("保存偏好失败") from e

        return PreferenceSaveResult(
            success=True,
            message="偏好已保存",
            preference_id=row.id,
            weight=float(row.weight),
        )

    async def get_user_preferences(self, user_id: int) -> Tuple[Dict[str, List[Dict[str, Any]]], int]:
        """按类型分组返回偏好（组内按权重降序），以及偏好总数"""
        result = await self.db.execute(
            select(UserPreference.preference_type, UserPreference.preference_value, UserPreference.weight)
            .where(UserPreference.user_id == user_id)
            .order_by(UserPreference.weight.desc(), UserPreference.id.asc())
        )
        rows = result.all()
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for pref_type, value, weight in rows:
            grouped.setdefault(pref_type, []).append({"value": value, "weight": float(weight)})
        return grouped, len(rows)

    async def extract_preferences_from_travel(
        self,
        user_id: int,
        travel_info: Union[Dict[str, Any], TravelInfo],
    ) -> Tuple[int, List[PreferenceSaveResult]]:
        """从旅游信息中提取并保存偏好，返回 (提取数量, 每条偏好的保存结果)"""
        derived = derive_travel_preferences(travel_info)
        results = []
        for pref_type, value in derived:
            results.append(await self.save_preference(user_id, pref_type, value, DEFAULT_WEIGHT))
        return len(derived), results

    async def save_travel_history(self, user_id: int, data: Union[Dict[str, Any], TravelHistoryCreate]) -> int:
        """保存一条旅游历史，返回记录ID"""
        info = _as_dict(data)
        destination = str(info.get("destination") or "").strip()
        days = parse_number(info.get("days"))
        people = parse_number(info.get("people"))
        budget = parse_number(info.get("budget"))
        if not destination or not days or not people or not budget:
            raise ValidationError("目的地、天数、人数和预算都是必填项")
        rating = info.get("satisfaction_rating")
        if rating is not None and not 1 <= int(rating) <= 5:
            raise ValidationError("满意度评分需在1到5之间")

        record = TravelHistory(
            user_id=user_id,
            destination=destination,
            days=int(days),
            people=int(people),
            budget=budget,
            travel_plan=info.get("travel_plan"),
            satisfaction_rating=rating,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("保存旅游历史失败 user_id=%s: %s", user_id, e)
            raise InternalError("保存旅游历史失败") from e
        await self.db.refresh(record)
        return record.id

    async def get_travel_history(self, user_id: int, limit: int = 10) -> List[TravelHistoryItem]:
        """获取最近的旅游历史（按创建时间倒序）"""
        if limit < 1:
            raise ValidationError("limit 必须大于0")
        result = await self.db.execute(
            select(TravelHistory)
            .where(TravelHistory.user_id == user_id)
            .order_by(TravelHistory.created_at.desc(), TravelHistory.id.desc())
            .limit(limit)
        )
        return [TravelHistoryItem.model_validate(r) for r in result.scalars().all()]

    async def generate_personalized_prompt(self, user_id: int, top_n: int = 3, history_count: int = 3) -> str:
        """生成个性化提示片段；没有任何偏好和历史、或内部出错时返回空字符串"""
        try:
            preferences, _ = await self.get_user_preferences(user_id)
            history = await self.get_travel_history(user_id, history_count)
        except Exception:
            logger.exception("生成个性化提示失败 user_id=%s", user_id)
            return ""

        if not preferences and not history:
            return ""

        lines = ["", "", "根据用户历史偏好进行个性化推荐："]
        if preferences:
            lines.append("用户偏好：")
            for pref_type, items in preferences.items():
                label = PREFERENCE_LABELS.get(pref_type, f"{pref_type}偏好")
                values = ", ".join(f"{p['value']}(权重:{_format_number(p['weight'])})" for p in items[:top_n])
                lines.append(f"- {label}: {values}")

        if history:
            lines.append("")
            lines.append("最近旅行历史：")
            for index, trip in enumerate(history[:history_count], start=1):
                lines.append(f"{index}. {trip.destination} ({trip.days}天, {trip.people}人, 预算{_format_number(trip.budget)}元)")

        lines.append("")
        lines.append("请基于以上偏好信息，为用户提供更加个性化和精准的旅游建议。")
        return "\n".join(lines)
