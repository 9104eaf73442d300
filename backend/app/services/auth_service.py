"""
认证服务：注册、登录、JWT 签发/校验/刷新（直接使用 bcrypt，避免 passlib 与 bcrypt 版本不兼容）
"""
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import bcrypt
from jose import jwt, JWTError
from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AccountNotFoundError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    ValidationError,
)
from app.models.user import User
from app.schemas.auth import UserResponse

logger = logging.getLogger(__name__)

# bcrypt 最多 72 字节，超长密码需截断（与注册/登录一致）
BCRYPT_MAX_BYTES = 72
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
LOGIN_FAILED_MESSAGE = "用户名或密码错误"


def _truncate_password_72(password: str) -> bytes:
    """将密码截断为 72 字节（UTF-8），返回 bytes 供 bcrypt 使用"""
    b = password.encode("utf-8")
    if len(b) <= BCRYPT_MAX_BYTES:
        return b
    return b[:BCRYPT_MAX_BYTES]


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    """用户不存在时参与比较的占位哈希，使两种登录失败耗时一致"""
    return bcrypt.hashpw(b"dummy-password-for-timing", bcrypt.gensalt(rounds=rounds)).decode("utf-8")


class AuthService:
    """认证服务类

    令牌为无状态 JWT，载荷包含 sub(用户ID)、username、email、iat、exp、jti。
    校验时除签名和有效期外，还会回库确认用户仍然存在，返回库中的最新用户信息。
    刷新令牌不会作废旧令牌，新旧令牌在各自过期前均有效。
    """

    def __init__(
        self,
        db: AsyncSession,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 10080,
        bcrypt_rounds: int = 10,
        password_min_length: int = 6,
    ):
        self.db = db
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes
        self.bcrypt_rounds = bcrypt_rounds
        self.password_min_length = password_min_length

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """验证密码（bcrypt.checkpw 内部为常量时间比较）"""
        try:
            return bcrypt.checkpw(
                _truncate_password_72(plain_password),
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            # 哈希格式损坏
            return False

    def get_password_hash(self, password: str) -> str:
        """生成密码哈希"""
        return bcrypt.hashpw(
            _truncate_password_72(password),
            bcrypt.gensalt(rounds=self.bcrypt_rounds),
        ).decode("utf-8")

    def create_access_token(self, user: UserResponse, expires_delta: Optional[timedelta] = None) -> str:
        """创建访问令牌"""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else timedelta(minutes=self.expire_minutes))
        to_encode = {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "iat": now,
            "exp": expire,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> dict:
        """解码并校验签名与有效期"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise InvalidTokenError() from e
        sub = payload.get("sub")
        if sub is None or not str(sub).isdigit():
            raise InvalidTokenError()
        return payload

    def validate_registration(self, username: Optional[str], email: Optional[str], password: Optional[str]) -> None:
        if not username or not email or not password:
            raise ValidationError("用户名、邮箱和密码都是必填项")
        if len(password) < self.password_min_length:
            raise ValidationError(f"密码长度至少{self.password_min_length}位")
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("邮箱格式不正确")

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_login(self, username_or_email: str) -> Optional[User]:
        """根据用户名或邮箱获取用户"""
        result = await self.db.execute(
            select(User).where(or_(User.username == username_or_email, User.email == username_or_email))
        )
        return result.scalars().first()

    async def register(self, username: Optional[str], email: Optional[str], password: Optional[str]) -> tuple[UserResponse, str]:
        """注册用户，返回 (用户信息, 令牌)"""
        username = (username or "").strip()
        email = (email or "").strip()
        self.validate_registration(username, email, password)

        existing = await self.db.execute(
            select(User.id).where(or_(User.username == username, User.email == email))
        )
        if existing.first() is not None:
            raise ConflictError("用户名或邮箱已存在")

        user = User(
            username=username,
            email=email,
            password_hash=self.get_password_hash(password),
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # 并发注册时唯一约束兜底
            await self.db.rollback()
            raise ConflictError("用户名或邮箱已存在") from e
        await self.db.refresh(user)

        summary = UserResponse.model_validate(user)
        logger.info("新用户注册: id=%s username=%s", summary.id, summary.username)
        return summary, self.create_access_token(summary)

    async def login(self, username_or_email: Optional[str], password: Optional[str]) -> tuple[UserResponse, str]:
        """登录：用户不存在与密码错误返回相同提示，且都执行一次 bcrypt 校验"""
        if not username_or_email or not password:
            raise ValidationError("用户名和密码都是必填项")

        user = await self.get_user_by_login(username_or_email.strip())
        if user is None:
            self.verify_password(password, _dummy_hash(self.bcrypt_rounds))
            raise AccountNotFoundError(LOGIN_FAILED_MESSAGE)
        if not self.verify_password(password, user.password_hash or ""):
            raise InvalidCredentialsError(LOGIN_FAILED_MESSAGE)

        summary = UserResponse.model_validate(user)
        logger.info("用户登录: id=%s", summary.id)
        return summary, self.create_access_token(summary)

    async def verify_token(self, token: Optional[str]) -> UserResponse:
        """校验令牌并返回库中的用户信息"""
        if not token:
            raise InvalidTokenError()
        payload = self.decode_token(token)
        user = await self.get_user_by_id(int(payload["sub"]))
        if user is None:
            raise AccountNotFoundError()
        return UserResponse.model_validate(user)

    async def refresh_token(self, token: Optional[str]) -> tuple[UserResponse, str]:
        """刷新令牌：校验通过后签发新的 7 天令牌（旧令牌不作废）"""
        user = await self.verify_token(token)
        return user, self.create_access_token(user)
