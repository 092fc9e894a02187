"""
채팅 매칭 API.
username은 앞단 인증 계층이 넘겨준 값을 그대로 신뢰 (여기서 인증하지 않음).
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.dependencies import get_chat_service
from app.schemas.chat import ChatStartResponse, QueueStatusResponse, RoomResponse
from app.services.chat_service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _require_username(username: str = Query("")) -> str:
    username = username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="username required")
    return username


@router.post("/start", response_model=ChatStartResponse, response_model_exclude_none=True)
def start_chat(
    username: str = Depends(_require_username),
    service: ChatService = Depends(get_chat_service),
):
    """
    대화 상대 요청. 대기 중인 방 합류 / 새 방 생성 / 대기열 중 하나.
    같은 사용자가 다시 호출해도 같은 방(또는 같은 순번)을 돌려줌.
    """
    assignment = service.start_chat(username)
    return ChatStartResponse.from_assignment(assignment)


@router.get("/queue-status", response_model=QueueStatusResponse)
def queue_status(
    username: str = Depends(_require_username),
    service: ChatService = Depends(get_chat_service),
):
    """대기열 순번 폴링용. position 0 = 대기열에 없음 (배정됐거나 만료됨 → start 재호출)."""
    position = service.get_queue_position(username)
    return QueueStatusResponse(in_queue=position > 0, position=position, queue_size=service.get_queue_size())


@router.get("/rooms/waiting", response_model=list[RoomResponse])
def waiting_rooms(service: ChatService = Depends(get_chat_service)):
    return [RoomResponse.from_room(r) for r in service.get_waiting_rooms()]


@router.get("/rooms/{room_code}", response_model=RoomResponse)
def get_room(room_code: str, service: ChatService = Depends(get_chat_service)):
    room = service.get_room(room_code)
    if room is None:
        raise HTTPException(status_code=404, detail="room not found")
    return RoomResponse.from_room(room)


@router.post("/rooms/{room_code}/join", response_model=RoomResponse)
def join_room(
    room_code: str,
    username: str = Depends(_require_username),
    service: ChatService = Depends(get_chat_service),
):
    """
    WebSocket 연결 전 입장 확인. 이미 멤버면 그대로 성공.
    없는 방 404, 다른 두 명으로 꽉 찬 방 403 (main.py 예외 핸들러).
    """
    return RoomResponse.from_room(service.join_room(room_code, username))


@router.post("/rooms/{room_code}/leave", status_code=204)
def leave_room(
    room_code: str,
    username: str = Depends(_require_username),
    service: ChatService = Depends(get_chat_service),
):
    """방 나가기. 방/멤버가 없어도 204."""
    service.leave_room(room_code, username)
