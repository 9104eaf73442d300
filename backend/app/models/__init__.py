# Database models
from app.models.user import User
from app.models.preference import UserPreference, TravelHistory

__all__ = [
    "User",
    "UserPreference",
    "TravelHistory",
]
