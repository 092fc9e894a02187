"""
방 슬롯 대기열 (FIFO).
join 시 방이 꽉 차 있으면 여기 들어가고, 주기적인 promotion에서 앞에서부터 방에 배정됨.
빠지는 경로는 promotion 또는 만료(expire)뿐.

※ 대기열은 프로세스별 메모리(in-memory)입니다.
  uvicorn을 여러 워커로 띄우면 워커마다 큐가 따로 있어 서로 매칭되지 않습니다. 단일 워커로 실행하세요.

room_registry와 마찬가지로 락은 호출자가 self.lock으로 잡음.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.core.rwlock import ReadWriteLock
from app.models.room import QueueEntry


class WaitQueue:
    def __init__(self, clock: Callable[[], datetime]):
        self.lock = ReadWriteLock()
        self._clock = clock
        self._entries: list[QueueEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def size(self) -> int:
        return len(self._entries)

    def position(self, username: str) -> int:
        """1부터 시작하는 순번. 대기열에 없으면 0."""
        for i, entry in enumerate(self._entries):
            if entry.username == username:
                return i + 1
        return 0

    def enqueue(self, username: str) -> tuple[int, bool]:
        """
        대기열 맨 뒤에 추가.
        이미 대기 중이면 새로 넣지 않고 기존 순번 반환.
        반환: (position, added)
        """
        existing = self.position(username)
        if existing:
            return existing, False
        self._entries.append(QueueEntry(username=username, queued_at=self._clock()))
        return len(self._entries), True

    def dequeue_front(self) -> Optional[QueueEntry]:
        """
        맨 앞 항목 하나를 꺼냄. 없으면 None.
        promotion은 배정 못 한 항목을 건너뛰고 계속 진행해야 해서 drain()을 씀.
        """
        if not self._entries:
            return None
        return self._entries.pop(0)

    def remove(self, username: str) -> bool:
        for i, entry in enumerate(self._entries):
            if entry.username == username:
                del self._entries[i]
                return True
        return False

    def remove_expired(self, ttl: timedelta) -> list[QueueEntry]:
        """queued_at 이후 ttl 이상 지난 항목 제거. 남은 항목 순서는 유지."""
        now = self._clock()
        expired = [e for e in self._entries if now - e.queued_at >= ttl]
        if expired:
            self._entries = [e for e in self._entries if now - e.queued_at < ttl]
        return expired

    def drain(self, assign: Callable[[QueueEntry], bool]) -> list[QueueEntry]:
        """
        앞에서부터 한 번씩 assign(entry) 호출. True를 돌려준 항목만 대기열에서 제거.
        제거된 항목 리스트 반환 (FIFO 순).
        """
        taken: list[QueueEntry] = []
        remaining: list[QueueEntry] = []
        for entry in self._entries:
            if assign(entry):
                taken.append(entry)
            else:
                remaining.append(entry)
        self._entries = remaining
        return taken

    def entries(self) -> list[QueueEntry]:
        return [QueueEntry(username=e.username, queued_at=e.queued_at) for e in self._entries]
