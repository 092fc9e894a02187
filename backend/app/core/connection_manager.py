"""
WebSocket 연결 관리. room_code별 (username → WebSocket) 목록 및 브로드캐스트.
방 멤버십 자체는 ChatService가 관리하고, 여기서는 전달만 담당. 메시지는 저장하지 않음.
"""
import asyncio
import json
import logging
import time
from typing import Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def chat_message(msg_type: str, text: str, sender: Optional[str] = None) -> dict:
    message = {"type": msg_type, "text": text, "timestamp": int(time.time() * 1000)}
    if sender is not None:
        message["from"] = sender
    return message


class ConnectionManager:
    """room_code별 WebSocket 연결 목록 관리 및 브로드캐스트."""

    def __init__(self):
        self._connections: dict[str, dict[str, WebSocket]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """메인 이벤트 루프 설정 (lifespan에서 호출). 스케줄러 스레드에서 방 종료 알림 시 사용."""
        self._loop = loop

    @property
    def active_count(self) -> int:
        return sum(len(conns) for conns in self._connections.values())

    def usernames(self, room_code: str) -> list[str]:
        return list(self._connections.get(room_code, {}))

    async def connect(self, room_code: str, username: str, websocket: WebSocket) -> None:
        """accept 후 등록. 같은 방에 같은 사용자의 이전 연결이 있으면 닫고 교체."""
        await websocket.accept()
        conns = self._connections.setdefault(room_code, {})
        old = conns.get(username)
        conns[username] = websocket
        if old is not None and old is not websocket:
            try:
                await old.close(code=1000)
            except Exception as e:
                logger.debug("old connection close room=%s user=%s: %s", room_code, username, e)

    def disconnect(self, room_code: str, username: str, websocket: WebSocket) -> bool:
        """
        이 websocket이 아직 해당 사용자의 현재 연결이면 제거하고 True.
        이미 새 연결로 교체된 경우 False (호출자는 방 퇴장 처리를 하면 안 됨).
        """
        conns = self._connections.get(room_code)
        if not conns or conns.get(username) is not websocket:
            return False
        del conns[username]
        if not conns:
            del self._connections[room_code]
        return True

    def is_connected(self, room_code: str, username: str, websocket: WebSocket) -> bool:
        return self._connections.get(room_code, {}).get(username) is websocket

    async def broadcast(self, room_code: str, message: dict) -> list[str]:
        """
        해당 방에 연결된 모든 클라이언트에 JSON 전송. 연결 없으면 무시.
        전송 실패한 연결은 목록에서 빼고, 그 username 리스트 반환 (호출자가 방 퇴장 처리).
        """
        conns = self._connections.get(room_code)
        if not conns:
            return []
        payload = json.dumps(message, ensure_ascii=False)
        dead = []
        for username, ws in list(conns.items()):
            try:
                await ws.send_text(payload)
            except Exception as e:
                logger.info("send failed room=%s user=%s: %s", room_code, username, e)
                dead.append((username, ws))
        return [username for username, ws in dead if self.disconnect(room_code, username, ws)]

    async def close_room(self, room_code: str, message: dict) -> None:
        """알림 전송 후 방의 모든 연결 종료 (정리된 방)."""
        await self.broadcast(room_code, message)
        for username, ws in list(self._connections.get(room_code, {}).items()):
            self.disconnect(room_code, username, ws)
            try:
                await ws.close(code=1000)
            except Exception as e:
                logger.debug("close failed room=%s user=%s: %s", room_code, username, e)

    def schedule_close_room(self, room_code: str, text: str) -> None:
        """
        동기 컨텍스트(스케줄러 스레드)에서 호출용. 메인 이벤트 루프에 close_room 코루틴을 스케줄.
        루프가 설정되지 않았으면 no-op.
        """
        if self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(self.close_room(room_code, chat_message("system", text)), self._loop)


# 앱 전역 싱글톤 (ws 라우터, lifespan에서 사용)
manager = ConnectionManager()
