import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.connection_manager import manager
from app.core.dependencies import get_chat_service
from app.routers import admin, chat, ws
from app.services.chat_service import ChatService, RoomFullError, RoomNotFoundError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    앱 기동 시 매칭 엔진 생성(백그라운드 sweep 시작) + WebSocket 매니저에 이벤트 루프 등록.
    혼자 남은 방이 정리되면 스케줄러 스레드에서 해당 방 연결에 알림 후 종료.
    """
    manager.set_event_loop(asyncio.get_running_loop())
    service = ChatService.from_settings(
        settings,
        on_room_reaped=lambda code: manager.schedule_close_room(code, "room closed due to inactivity"),
    )
    app.state.chat_service = service
    try:
        yield
    finally:
        service.shutdown()


# ── 앱 초기화 ──────────────────────────────────────────
app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── 라우터 등록 ────────────────────────────────────────
app.include_router(chat.router)
app.include_router(ws.router)
app.include_router(admin.router)


# ── 예외 처리 ──────────────────────────────────────────
@app.exception_handler(RoomNotFoundError)
def room_not_found_handler(request: Request, exc: RoomNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "room not found", "room": exc.room_code})


@app.exception_handler(RoomFullError)
def room_full_handler(request: Request, exc: RoomFullError):
    # 정상 흐름이면 받을 수 없는 코드 → 배정과 입장 사이 경합. 호출자에게 forbidden으로 알림
    logger.warning("RoomFullError → 403 room=%s", exc.room_code)
    return JSONResponse(status_code=403, content={"detail": "room is full", "room": exc.room_code})


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    """미처리 예외 시 로그 남기고, 개발 환경에서는 응답 본문에 예외 내용 포함."""
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    tb = traceback.format_exc()
    logger.exception("Unhandled exception: %s", exc)
    if settings.APP_ENV in ("development", "test"):
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal Server Error",
                "debug": str(exc),
                "traceback": tb.split("\n"),
            },
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# ── 헬스체크 ───────────────────────────────────────────
@app.get("/health")
def health(service: ChatService = Depends(get_chat_service)):
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "active_connections": manager.active_count,
        "rooms": service.stats()["rooms"],
        "queue_size": service.get_queue_size(),
    }
