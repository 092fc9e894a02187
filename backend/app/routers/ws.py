"""
WebSocket: 방 단위 실시간 채팅 릴레이.
연결 전에 ChatService.join_room으로 입장 권한 확인 (없는 방 4404, 꽉 찬 방 4403).
받은 텍스트(바이너리는 UTF-8 디코드)는 같은 방 전원에게 그대로 브로드캐스트. 저장하지 않음.
"""
import logging

from fastapi import APIRouter, Depends, WebSocket

from app.core.config import settings
from app.core.connection_manager import chat_message, manager
from app.core.dependencies import get_chat_service
from app.services.chat_service import ChatService, RoomFullError, RoomNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["websocket"])

CLOSE_POLICY_VIOLATION = 1008
CLOSE_MESSAGE_TOO_BIG = 1009
CLOSE_ROOM_FULL = 4403
CLOSE_ROOM_NOT_FOUND = 4404


async def _relay(service: ChatService, room_code: str, message: dict) -> None:
    """브로드캐스트. 전송 실패로 끊긴 사용자는 방에서도 퇴장 처리하고 남은 사람에게 알림."""
    pending = [message]
    while pending:
        for gone in await manager.broadcast(room_code, pending.pop(0)):
            service.leave_room(room_code, gone)
            logger.info("ws dropped room=%s user=%s", room_code, gone)
            pending.append(chat_message("system", f"{gone} left the chat"))


def _frame_text(message: dict) -> str:
    """텍스트/바이너리 프레임 모두 문자열로. 바이너리는 UTF-8로 디코드."""
    if message.get("text") is not None:
        return message["text"]
    return (message.get("bytes") or b"").decode("utf-8", errors="replace")


@router.websocket("/chat")
async def websocket_chat(
    websocket: WebSocket,
    room: str = "",
    username: str = "",
    service: ChatService = Depends(get_chat_service),
):
    """
    ?room=<code>&username=<name>
    accept 전에 거절하면 클라이언트는 핸드셰이크 단계에서 close code를 받음.
    """
    room_code, username = room.strip(), username.strip()
    if not room_code or not username:
        await websocket.close(code=CLOSE_POLICY_VIOLATION)
        return

    try:
        service.join_room(room_code, username)
    except RoomNotFoundError:
        await websocket.close(code=CLOSE_ROOM_NOT_FOUND)
        return
    except RoomFullError:
        await websocket.close(code=CLOSE_ROOM_FULL)
        return

    await manager.connect(room_code, username, websocket)
    logger.info("ws connected room=%s user=%s", room_code, username)
    try:
        await _relay(service, room_code, chat_message("system", f"{username} joined the chat"))
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # 전송 실패로 이미 목록에서 빠진 연결
            if not manager.is_connected(room_code, username, websocket):
                break
            text = _frame_text(message)
            if len(text.encode("utf-8")) > settings.CHAT_MAX_MESSAGE_BYTES:
                logger.info("ws message too big room=%s user=%s", room_code, username)
                await websocket.close(code=CLOSE_MESSAGE_TOO_BIG)
                break
            await _relay(service, room_code, chat_message("message", text, sender=username))
    finally:
        # 같은 사용자가 재접속해 교체된 연결이면 방 퇴장 처리하지 않음
        if manager.disconnect(room_code, username, websocket):
            service.leave_room(room_code, username)
            logger.info("ws disconnected room=%s user=%s", room_code, username)
            await _relay(service, room_code, chat_message("system", f"{username} left the chat"))
