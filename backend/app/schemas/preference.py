"""
偏好与旅游历史相关Schema
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.schemas.common import CamelModel, SuccessResponse


class PreferenceCreate(CamelModel):
    """保存偏好：preferenceType / preferenceValue 必填，weight 可选"""
    preference_type: Optional[str] = None
    preference_value: Optional[str] = None
    weight: Optional[float] = Field(default=None, gt=0)


class PreferenceBatchRequest(CamelModel):
    preferences: Optional[List[PreferenceCreate]] = None


class PreferenceItem(CamelModel):
    value: str
    weight: float


class PreferenceSaveResult(SuccessResponse):
    preference_id: int
    weight: float


class PreferenceListResponse(SuccessResponse):
    preferences: Dict[str, List[PreferenceItem]]
    total_count: int


class PreferenceBatchResponse(SuccessResponse):
    results: List[PreferenceSaveResult]
    processed_count: int


class TravelInfo(CamelModel):
    """旅游信息：字段可能来自大模型提取，均按字符串/数字宽松接收"""
    destination: Optional[str] = None
    days: Optional[Any] = None
    people: Optional[Any] = None
    budget: Optional[Any] = None


class ExtractPreferencesRequest(CamelModel):
    travel_info: Optional[TravelInfo] = None


class ExtractPreferencesResponse(SuccessResponse):
    extracted_count: int
    results: List[PreferenceSaveResult]


class TravelHistoryCreate(CamelModel):
    destination: Optional[str] = None
    days: Optional[Any] = None
    people: Optional[Any] = None
    budget: Optional[Any] = None
    travel_plan: Optional[str] = None
    satisfaction_rating: Optional[int] = Field(default=None, ge=1, le=5)


class TravelHistoryCreateResponse(SuccessResponse):
    history_id: int


class TravelHistoryItem(CamelModel):
    id: int
    destination: str
    days: int
    people: int
    budget: float
    travel_plan: Optional[str] = None
    satisfaction_rating: Optional[int] = None
    created_at: Optional[datetime] = None


class TravelHistoryListResponse(SuccessResponse):
    history: List[TravelHistoryItem]
    count: int


class PersonalizedPromptResponse(SuccessResponse):
    prompt: str
