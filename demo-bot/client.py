import time
from typing import Optional

import httpx


class ChatMixClient:
    """ChatMix 매칭 API 클라이언트. 웹 프론트엔드와 같은 흐름 (start → queue-status 폴링 → start 재호출)."""

    def __init__(self, username: str, base_url: str = "http://localhost:8000", timeout: float = 10.0):
        self.username = username
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _params(self) -> dict:
        return {"username": self.username}

    def start_chat(self) -> dict:
        r = httpx.post(f"{self.base_url}/api/chat/start", params=self._params(), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def queue_status(self) -> dict:
        r = httpx.get(f"{self.base_url}/api/chat/queue-status", params=self._params(), timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def leave(self, room_code: str) -> None:
        r = httpx.post(
            f"{self.base_url}/api/chat/rooms/{room_code}/leave", params=self._params(), timeout=self.timeout,
        )
        r.raise_for_status()

    def wait_for_room(self, poll_sec: float = 2.0, max_wait_sec: float = 330.0) -> Optional[str]:
        """
        방 배정까지 대기. 대기열에서 빠지면(position 0) start를 다시 호출해 배정된 방 코드 확인.
        promotion이 아니라 만료로 빠졌다면 다시 대기열에 들어감. max_wait_sec 지나면 None.
        """
        deadline = time.monotonic() + max_wait_sec
        resp = self.start_chat()
        while resp["status"] != "room_assigned":
            if time.monotonic() >= deadline:
                return None
            time.sleep(poll_sec)
            if self.queue_status()["in_queue"]:
                continue
            resp = self.start_chat()
        return resp["room"]
