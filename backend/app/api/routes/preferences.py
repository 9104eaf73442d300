"""
用户偏好与旅游历史API（均需登录）
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_user, get_preference_service
from app.core.config import settings
from app.core.exceptions import ValidationError
from app.schemas.auth import UserResponse
from app.schemas.preference import (
    ExtractPreferencesRequest,
    ExtractPreferencesResponse,
    PersonalizedPromptResponse,
    PreferenceBatchRequest,
    PreferenceBatchResponse,
    PreferenceCreate,
    PreferenceListResponse,
    PreferenceSaveResult,
    TravelHistoryCreate,
    TravelHistoryCreateResponse,
    TravelHistoryListResponse,
)
from app.services.preference_service import DEFAULT_WEIGHT, PreferenceService, parse_number

router = APIRouter()


def _history_limit(raw: Optional[str]) -> int:
    """limit 缺失、无法解析或小于 1 时使用默认值，超过上限时取上限"""
    value = parse_number(raw)
    if value is None or int(value) < 1:
        return settings.TRAVEL_HISTORY_DEFAULT_LIMIT
    return min(int(value), settings.TRAVEL_HISTORY_MAX_LIMIT)


@router.get("", response_model=PreferenceListResponse)
async def get_preferences(
    current_user: UserResponse = Depends(get_current_user),
    preference_service: PreferenceService = Depends(get_preference_service),
):
    """获取用户偏好（按类型分组，组内按权重降序）"""
    preferences, total = await preference_service.get_user_preferences(current_user.id)
    return PreferenceListResponse(preferences=preferences, total_count=total)


@router.post("", response_model=PreferenceSaveResult, status_code=status.HTTP_201_CREATED)
async def save_preference(
    body: PreferenceCreate,
    current_user: UserResponse = Depends(get_current_user),
    preference_service: PreferenceService = Depends(get_preference_service),
):
    """保存用户偏好（已存在则累加权重）"""
    return await preference_service.save_preference(
        current_user.id,
        body.preference_type,
        body.preference_value,
        body.weight if body.weight is not None else DEFAULT_WEIGHT,
    )


@router.post("/extract", response_model=ExtractPreferencesResponse)
async def extract_preferences(
    body: ExtractPreferencesRequest,
    current_user: UserResponse = Depends(get_current_user),
    preference_service: PreferenceService = Depends(get_preference_service),
):
    """从旅游信息中提取偏好"""
    if body.travel_info is None:
        raise ValidationError("旅游信息是必填项")
    count, results = await preference_service.extract_preferences_from_travel(current_user.id, body.travel_info)
    return ExtractPreferencesResponse(message="偏好提取完成", extracted_count=count, results=results)


@router.post("/history", response_model=TravelHistoryCreateResponse, status_code=status.HTTP_201_CREATED)
async def save_history(
    body: TravelHistoryCreate,
    current_user: UserResponse = Depends(get_current_user),
    preference_service: PreferenceService = Depends(get_preference_service),
):
    """保存旅游历史记录"""
    history_id = await preference_service.save_travel_history(current_user.id, body)
    return TravelHistoryCreateResponse(message="旅游历史已保存", history_id=history_id)


@router.get("/history", response_model=TravelHistoryListResponse)
async def get_history(
    limit: Optional[str] = Query(default=None),
    current_user: UserResponse = Depends(get_current_user),
    preference_service: PreferenceService = Depends(get_preference_service),
):
    """获取旅游历史记录（最新在前）"""
    history = await preference_service.get_travel_history(current_user.id, _history_limit(limit))
    return TravelHistoryListResponse(history=history, count=len(history))


@router.get("/personalized-prompt", response_model=PersonalizedPromptResponse)
async def get_personalized_prompt(
    current_user: UserResponse = Depends(get_current_user),
    preference_service: PreferenceService = Depends(get_preference_service),
):
    """获取个性化推荐提示"""
    prompt = await preference_service.generate_personalized_prompt(
        current_user.id,
        top_n=settings.PREFERENCE_TOP_N,
        history_count=settings.PERSONALIZED_HISTORY_COUNT,
    )
    return PersonalizedPromptResponse(prompt=prompt)


@router.post("/batch", response_model=PreferenceBatchResponse)
async def save_preferences_batch(
    body: PreferenceBatchRequest,
    current_user: UserResponse = Depends(get_current_user),
    preference_service: PreferenceService = Depends(get_preference_service),
):
    """批量保存偏好：缺少类型或值的条目直接跳过"""
    if not body.preferences:
        raise ValidationError("偏好列表不能为空")
    results = []
    for pref in body.preferences:
        if not (pref.preference_type or "").strip() or not (pref.preference_value or "").strip():
            continue
        results.append(await preference_service.save_preference(
            current_user.id,
            pref.preference_type,
            pref.preference_value,
            pref.weight or DEFAULT_WEIGHT,
        ))
    return PreferenceBatchResponse(message="批量保存完成", results=results, processed_count=len(results))
