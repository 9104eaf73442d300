"""
FastAPI主应用入口
"""
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import api_router
from app.core.config import INSECURE_JWT_SECRET, settings
from app.core.database import engine, ensure_sqlite_directory, init_db
from app.core.exceptions import AppError, UpstreamError
from app.core.health import check_db, check_llm
from app.core.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时执行
    setup_logging()
    ensure_sqlite_directory(settings.DATABASE_URL)
    # 创建数据库表
    await init_db(engine)
    if settings.JWT_SECRET_KEY == INSECURE_JWT_SECRET:
        logger.warning("正在使用默认 JWT 密钥，仅限开发环境")
    logger.info("%s 启动完成（%s）", settings.PROJECT_NAME, settings.ENVIRONMENT)

    yield

    # 关闭时执行
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="对话式旅游规划：用户认证、偏好学习与个性化行程生成",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# GZip压缩（旅游规划文本较长）
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """为每个请求生成或透传 X-Request-ID，并写入 request.state"""
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    return response


def _error_response(message: str, request_id: str | None = None, error: str | None = None) -> dict:
    body = {"success": False, "message": message}
    if error:
        body["error"] = error
    if request_id:
        body["request_id"] = request_id
    return body


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """业务异常统一格式：{success: false, message}"""
    rid = getattr(request.state, "request_id", None)
    error = None
    if isinstance(exc, UpstreamError):
        logger.error("大模型调用失败: %s %s", exc.message, exc.detail or "")
        error = str(exc.detail) if exc.detail else exc.message
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_response(exc.message, request_id=rid, error=error),
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """统一 HTTP 异常响应格式"""
    rid = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_response(
            exc.detail if isinstance(exc.detail, str) else str(exc.detail),
            request_id=rid,
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """参数校验错误统一返回 400"""
    rid = getattr(request.state, "request_id", None)
    errs = exc.errors()
    message = "请求参数校验失败"
    if errs:
        err = errs[0]
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        message = f"{loc}: {err.get('msg', message)}" if loc else err.get("msg", message)
    return JSONResponse(status_code=400, content=_error_response(message, request_id=rid))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """未捕获异常统一格式"""
    rid = getattr(request.state, "request_id", None)
    logger.exception("未处理的异常 path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content=_error_response("服务器内部错误", request_id=rid),
    )


# 注册路由
app.include_router(api_router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": f"{settings.PROJECT_NAME} API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """健康检查：返回各依赖状态"""
    db_ok, db_msg = await check_db()
    llm_ok, llm_msg = check_llm()
    return JSONResponse(
        content={
            "status": "healthy" if db_ok and llm_ok else "degraded",
            "service": "travel-planner-api",
            "dependencies": {
                "database": {"ok": db_ok, "message": db_msg},
                "llm": {"ok": llm_ok, "message": llm_msg},
            },
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=5000,
        reload=True,
        reload_excludes=["**/__pycache__/**", "**/*.pyc"],
    )
