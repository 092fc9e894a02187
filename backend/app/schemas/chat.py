"""채팅 매칭 API 응답 / WebSocket 메시지 스키마."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.room import ChatAssignment, Room


class ChatStartResponse(BaseModel):
    status: str                     # room_assigned | queued
    room: Optional[str] = None      # room_assigned일 때
    position: Optional[int] = None  # queued일 때 (1부터)
    message: str

    @classmethod
    def from_assignment(cls, a: ChatAssignment) -> "ChatStartResponse":
        return cls(status=a.status.value, room=a.room_code, position=a.position, message=a.message)


class QueueStatusResponse(BaseModel):
    in_queue: bool
    position: int
    queue_size: int


class RoomResponse(BaseModel):
    code: str
    members: list[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_room(cls, room: Room) -> "RoomResponse":
        return cls(code=room.code, members=room.members, created_at=room.created_at, updated_at=room.updated_at)


class ChatStatsResponse(BaseModel):
    rooms: int
    waiting_rooms: int
    full_rooms: int
    queue_size: int
    max_rooms: int
    active_connections: int = 0


class MaintenanceResponse(BaseModel):
    expired: list[str]
    reaped: list[str]
    promoted: list[dict] = Field(default_factory=list)  # [{"username", "room"}]
