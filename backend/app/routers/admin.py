"""
관리자용 API. 매칭 상태 조회, 백그라운드 sweep 즉시 실행.
인증: Header X-Admin-Secret 에 settings.ADMIN_SECRET 값 필요 (설정 안 하면 503/401).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from app.core.config import settings
from app.core.connection_manager import manager
from app.core.dependencies import get_chat_service
from app.schemas.chat import ChatStatsResponse, MaintenanceResponse
from app.services.chat_service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _require_admin_secret(x_admin_secret: Optional[str] = Header(None, alias="X-Admin-Secret")):
    if not settings.ADMIN_SECRET:
        raise HTTPException(status_code=503, detail="Admin not configured (ADMIN_SECRET not set)")
    if x_admin_secret is None or x_admin_secret != settings.ADMIN_SECRET:
        raise HTTPException(status_code=401, detail="Invalid or missing X-Admin-Secret")


@router.get("/chat/stats", response_model=ChatStatsResponse)
def chat_stats(
    _: None = Depends(_require_admin_secret),
    service: ChatService = Depends(get_chat_service),
):
    return ChatStatsResponse(**service.stats(), active_connections=manager.active_count)


@router.post("/chat/maintenance", response_model=MaintenanceResponse)
def run_maintenance(
    _: None = Depends(_require_admin_secret),
    service: ChatService = Depends(get_chat_service),
):
    """
    만료 → 방 정리 → promotion 을 지금 한 번 실행.
    스케줄러 주기를 기다리지 않고 상태를 정리하고 싶을 때 (개발/운영 점검용).
    """
    result = service.run_maintenance()
    logger.info(
        "admin chat maintenance: expired=%s reaped=%s promoted=%s",
        len(result["expired"]), len(result["reaped"]), len(result["promoted"]),
    )
    return MaintenanceResponse(
        expired=result["expired"],
        reaped=result["reaped"],
        promoted=[{"username": u, "room": code} for u, code in result["promoted"]],
    )
