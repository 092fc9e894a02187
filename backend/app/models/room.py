"""
채팅방 / 대기열 메모리 모델.
DB에 저장하지 않음. 프로세스 재시작 시 모두 사라지는 일시적 상태.
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

ROOM_CAPACITY = 2


class AssignmentStatus(str, enum.Enum):
    room_assigned = "room_assigned"
    queued = "queued"


@dataclass
class Room:
    code: str
    members: list[str]
    created_at: datetime
    updated_at: datetime

    def has_member(self, username: str) -> bool:
        return username in self.members

    def is_full(self) -> bool:
        return len(self.members) >= ROOM_CAPACITY

    def is_waiting(self) -> bool:
        """한 명만 들어와 상대를 기다리는 방."""
        return len(self.members) == 1

    def add_member(self, username: str, now: datetime) -> bool:
        """이미 멤버이거나 꽉 찬 방이면 no-op. 추가했으면 True."""
        if self.has_member(username) or self.is_full():
            return False
        self.members.append(username)
        self.updated_at = now
        return True

    def remove_member(self, username: str, now: datetime) -> bool:
        if username not in self.members:
            return False
        self.members.remove(username)
        self.updated_at = now
        return True

    def snapshot(self) -> "Room":
        """외부 반환용 복사본. 원본 members 리스트를 공유하지 않음."""
        return Room(
            code=self.code,
            members=list(self.members),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass
class QueueEntry:
    username: str
    queued_at: datetime


@dataclass
class ChatAssignment:
    """start_chat 결과. room_assigned면 room_code, queued면 position이 채워짐."""
    status: AssignmentStatus
    message: str
    room_code: Optional[str] = None
    position: Optional[int] = None
