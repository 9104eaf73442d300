"""
业务异常：服务层抛出带状态码的异常，由 main.py 中的异常处理器统一转换为 JSON 响应
"""
from typing import Any, Optional


class AppError(Exception):
    """业务异常基类"""
    status_code: int = 500
    default_message: str = "服务器内部错误"

    def __init__(self, message: Optional[str] = None, detail: Any = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AppError):
    """请求参数缺失或格式错误"""
    status_code = 400
    default_message = "请求参数错误"


class ConflictError(AppError):
    """用户名或邮箱重复"""
    status_code = 400
    default_message = "用户名或邮箱已存在"


class AuthError(AppError):
    status_code = 401
    default_message = "认证失败"


class InvalidCredentialsError(AuthError):
    default_message = "用户名或密码错误"


class InvalidTokenError(AuthError):
    default_message = "令牌无效或已过期"


class UnauthenticatedError(AuthError):
    default_message = "访问令牌缺失"


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "令牌无效"


class NotFoundError(AppError):
    status_code = 404
    default_message = "资源不存在"


class AccountNotFoundError(NotFoundError, AuthError):
    """账号不存在（登录时与密码错误同等对待，令牌校验时表示账号已被删除）"""
    status_code = 401
    default_message = "用户不存在"


class UpstreamError(AppError):
    """大模型接口调用失败：网络错误、非 2xx 或响应格式异常"""
    status_code = 500
    default_message = "生成回复时出错"


class UpstreamTimeoutError(UpstreamError):
    status_code = 504
    default_message = "大模型接口响应超时"


class InternalError(AppError):
    status_code = 500
    default_message = "服务器内部错误"
