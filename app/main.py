"""
app.main
~~~~~~~~

FastAPI 应用入口。

启动顺序：日志 → MongoDB → 协作中枢（挂到 ``app.state.collab_hub``）。
关闭时只需断开 MongoDB：中枢的全部状态都在内存中，随进程结束。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import room_ws, rooms
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.db import close_mongo, connect_mongo, get_database
from app.db.document_repository import DocumentRepository
from app.schemas import ApiResponse
from app.services.collab_hub import CollabHub

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await connect_mongo()
    hub = CollabHub.from_settings(DocumentRepository(get_database()))
    app.state.collab_hub = hub
    logger.info(
        "协作服务已启动 | env=%s | room_key=%s | replay_on_join=%s | echo_to_sender=%s",
        settings.ENVIRONMENT,
        settings.ROOM_KEY_PATTERN,
        settings.REPLAY_CACHE_ON_JOIN,
        settings.ECHO_UPDATES_TO_SENDER,
    )
    try:
        yield
    finally:
        rooms_left = hub.registry.room_keys()
        if rooms_left:
            logger.warning("关闭时仍有 %d 个活跃房间，缓存内容将丢失", len(rooms_left))
        await close_mongo()
        logger.info("协作服务已关闭")


app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="多人实时协作房间后端 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# REST 接口限流；WebSocket 通道不经过 slowapi
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.allow_cors_all_origins else settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=settings.allow_cors_all_origins,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(rooms.router, prefix="/api", tags=["Rooms"])
app.include_router(room_ws.router, tags=["WebSocket Rooms"])


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """未处理异常统一包装成 ``ApiResponse.fail()``，prod 环境隐藏细节。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    msg = "服务器内部错误" if settings.is_prod else str(exc)
    return JSONResponse(status_code=500, content=ApiResponse.fail(msg=msg, code=500).model_dump())


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    hub: CollabHub | None = getattr(request.app.state, "collab_hub", None)
    room_keys = hub.registry.room_keys() if hub is not None else []
    return JSONResponse(
        content={
            "status": "ok" if hub is not None else "starting",
            "environment": settings.ENVIRONMENT,
            "active_rooms": len(room_keys),
            "connections": sum(hub.registry.online_count(key) for key in room_keys) if hub else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,
        log_level=settings.effective_log_level.lower(),
    )
