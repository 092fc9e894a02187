"""
방 레지스트리 (code → Room).
여기 메서드는 락을 직접 잡지 않음. 호출자(ChatService)가 self.lock을 잡은 상태에서 호출해야 함.
  - 조회: lock.read()
  - 변경: lock.write()
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from app.core.room_code import generate_room_code
from app.core.rwlock import ReadWriteLock
from app.models.room import Room

logger = logging.getLogger(__name__)


class RoomCapacityError(RuntimeError):
    """max_rooms 에 도달한 상태에서 create_room 호출. 호출자는 먼저 has_capacity()를 확인해야 함."""


class RoomRegistry:
    def __init__(self, max_rooms: int, clock: Callable[[], datetime]):
        self.max_rooms = max_rooms
        self.lock = ReadWriteLock()
        self._clock = clock
        self._rooms: dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def has_capacity(self) -> bool:
        return len(self._rooms) < self.max_rooms

    def get(self, code: str) -> Optional[Room]:
        return self._rooms.get(code)

    def create_room(self, username: str) -> Room:
        """username 한 명이 들어간 새 방 생성."""
        if not self.has_capacity():
            raise RoomCapacityError(f"room limit reached ({self.max_rooms})")
        code = generate_room_code(lambda c: c in self._rooms)
        now = self._clock()
        room = Room(code=code, members=[username], created_at=now, updated_at=now)
        self._rooms[code] = room
        logger.info("room created code=%s user=%s rooms=%s/%s", code, username, len(self._rooms), self.max_rooms)
        return room

    def find_waiting_room(self) -> Optional[Room]:
        """멤버가 정확히 1명인 방 아무거나. 순서는 보장하지 않음."""
        for room in self._rooms.values():
            if room.is_waiting():
                return room
        return None

    def find_room_containing(self, username: str) -> Optional[Room]:
        for room in self._rooms.values():
            if room.has_member(username):
                return room
        return None

    def add_member(self, room: Room, username: str) -> bool:
        return room.add_member(username, self._clock())

    def remove_member(self, room: Room, username: str) -> bool:
        """멤버 제거. 방이 비면 같은 호출 안에서 레지스트리에서도 삭제."""
        removed = room.remove_member(username, self._clock())
        if not room.members:
            self.delete(room.code)
        return removed

    def delete(self, code: str) -> bool:
        room = self._rooms.pop(code, None)
        if room is None:
            return False
        logger.info("room deleted code=%s rooms=%s/%s", code, len(self._rooms), self.max_rooms)
        return True

    def lonely_rooms(self, idle_for: timedelta) -> list[Room]:
        """멤버 1명이고 updated_at 이후 idle_for 이상 지난 방."""
        now = self._clock()
        return [
            room for room in self._rooms.values()
            if room.is_waiting() and now - room.updated_at >= idle_for
        ]
