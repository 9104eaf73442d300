"""
应用配置：从环境变量读取配置
"""
from pathlib import Path
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

# 开发环境默认的 JWT 密钥，生产环境禁止使用
INSECURE_JWT_SECRET = "your-secret-key-change-in-production"


class Settings(BaseSettings):
    """应用配置类"""

    # 项目根目录
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT.parent / ".env"),  # 从项目根目录读取 .env
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # 运行环境：development | test | production
    ENVIRONMENT: str = "development"

    # API配置
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "智能旅游规划助手"
    CORS_ORIGINS: List[str] = ["*"]  # CORS允许的源

    # 数据库配置
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/travel_planner.db"
    DATABASE_ECHO: bool = False

    # 安全配置
    JWT_SECRET_KEY: str = INSECURE_JWT_SECRET
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 10080  # 7 天
    BCRYPT_ROUNDS: int = 10
    PASSWORD_MIN_LENGTH: int = 6

    # AI模型配置（OpenAI 兼容接口，默认 DeepSeek）
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "https://api.deepseek.com/v1"
    LLM_MODEL: str = "deepseek-chat"
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_EXTRACT_TEMPERATURE: float = 0.3
    LLM_EXTRACT_MAX_TOKENS: int = 1000
    LLM_PLAN_TEMPERATURE: float = 0.7
    LLM_PLAN_MAX_TOKENS: int = 2000

    # 偏好配置
    PREFERENCE_MAX_WEIGHT: float = 5.0
    PREFERENCE_TOP_N: int = 3  # 个性化提示中每类偏好取前 N 个
    PERSONALIZED_HISTORY_COUNT: int = 3  # 个性化提示中展示的最近旅行数
    TRAVEL_HISTORY_DEFAULT_LIMIT: int = 10
    TRAVEL_HISTORY_MAX_LIMIT: int = 100

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Path = PROJECT_ROOT / "logs" / "app.log"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @model_validator(mode="after")
    def check_production_secret(self) -> "Settings":
        """生产环境必须显式配置 JWT 密钥"""
        if self.is_production:
            secret = (self.JWT_SECRET_KEY or "").strip()
            if not secret or secret == INSECURE_JWT_SECRET:
                raise ValueError("生产环境必须设置 JWT_SECRET_KEY，且不能使用默认值")
        return self


# 创建全局配置实例
settings = Settings()
