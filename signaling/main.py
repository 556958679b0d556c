"""
signaling.main
~~~~~~~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from signaling.api import admin, ws
from signaling.core.config import settings
from signaling.core.logging import get_logger, setup_logging
from signaling.core.rate_limit import WebSocketRateLimiter, limiter
from signaling.schemas.api_response import ApiResponse
from signaling.schemas.rooms import HealthData
from signaling.services.connection import ConnectionManager
from signaling.services.event_router import EventRouter, allow_any_host, secret_host_gate
from signaling.services.registry import RoomRegistry

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


def build_event_router() -> EventRouter:
    """按当前配置组装注册表、连接管理器与事件路由器。"""
    host_gate = secret_host_gate(settings.HOST_SECRET) if settings.HOST_SECRET else allow_any_host
    return EventRouter(
        registry=RoomRegistry(),
        manager=ConnectionManager(max_queue=settings.SEND_QUEUE_SIZE),
        host_gate=host_gate,
        chat_limiter=WebSocketRateLimiter(interval_seconds=settings.CHAT_RATE_LIMIT_INTERVAL),
        allow_unadmitted_chat=settings.ALLOW_UNADMITTED_CHAT,
    )


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    event_router = build_event_router()
    app.state.event_router = event_router
    app.state.registry = event_router.registry
    logger.info(
        "🚀 信令服务已启动 | env=%s | port=%d | log_level=%s",
        settings.ENVIRONMENT,
        settings.PORT,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    logger.info(
        "👋 信令服务已关闭 | 剩余房间: %d | 剩余连接: %d",
        len(event_router.registry),
        event_router.manager.online_count,
    )


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="多人音视频会议的信令与会话协调服务",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# ── 限流 ──────────────────────────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(admin.router, tags=["Admin"])
app.include_router(ws.router, tags=["WebSocket Signaling"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"], response_model=HealthData)
async def health_check() -> HealthData:
    """验证服务是否正常运行。"""
    return HealthData(ok=True)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "signaling.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
