"""
用户偏好与旅游历史模型
"""
from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class UserPreference(Base):
    """用户偏好表：同一用户的 (类型, 值) 只有一行，重复出现时累加权重"""
    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "preference_type", "preference_value", name="uq_user_preference"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    preference_type = Column(String(32), nullable=False)  # destination, budget_range, duration_range, group_size
    preference_value = Column(String(200), nullable=False)
    weight = Column(Float, nullable=False, default=1.0, server_default="1.0")  # 上限 5.0
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="preferences")


class TravelHistory(Base):
    """旅游历史表（只追加，不修改）"""
    __tablename__ = "travel_history"
    __table_args__ = (
        CheckConstraint(
            "satisfaction_rating IS NULL OR (satisfaction_rating BETWEEN 1 AND 5)",
            name="ck_travel_history_rating",
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    destination = Column(String(200), nullable=False)
    days = Column(Integer, nullable=False)
    people = Column(Integer, nullable=False)
    budget = Column(Float, nullable=False)
    travel_plan = Column(Text, nullable=True)
    satisfaction_rating = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="travel_history")
