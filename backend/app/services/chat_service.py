"""
services/chat_service.py
1:1 익명 채팅 매칭 엔진.
대기 중인 방(1명)이 있으면 배정, 없으면 새 방 생성, 방 개수가 max_rooms에 도달했으면 대기열.
백그라운드에서 대기열 → 방 배정(promotion), 대기열 만료, 혼자 남은 방 정리를 주기적으로 수행.

락 순서: 두 구조를 모두 잡아야 하는 경로(start_chat, promotion)는 항상 대기열 락 → 방 락.
방 락만 필요한 경로(join/leave/reap)는 대기열 락을 잡지 않으므로 순서가 뒤집히는 일이 없음.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.core.room_registry import RoomRegistry
from app.core.scheduler import MaintenanceScheduler
from app.core.wait_queue import WaitQueue
from app.models.room import AssignmentStatus, ChatAssignment, QueueEntry, Room

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_PROCESS_INTERVAL_SEC = 5.0
DEFAULT_QUEUE_EXPIRY_INTERVAL_SEC = 30.0


class ChatRoomError(Exception):
    """join_room 실패 공통. 호출자에게 동기적으로 전달되는 복구 가능한 오류."""


class RoomNotFoundError(ChatRoomError, LookupError):
    def __init__(self, room_code: str):
        super().__init__(f"room not found: {room_code}")
        self.room_code = room_code


class RoomFullError(ChatRoomError):
    def __init__(self, room_code: str):
        super().__init__(f"room is full: {room_code}")
        self.room_code = room_code


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatService:
    def __init__(
        self,
        max_rooms: int,
        queue_timeout: float,
        room_cleanup_interval: float,
        queue_process_interval: float = DEFAULT_QUEUE_PROCESS_INTERVAL_SEC,
        queue_expiry_interval: float = DEFAULT_QUEUE_EXPIRY_INTERVAL_SEC,
        clock: Optional[Callable[[], datetime]] = None,
        on_room_reaped: Optional[Callable[[str], None]] = None,
        autostart: bool = True,
    ):
        """
        시간 인자는 모두 초 단위 (설정 로더에서 양수 검증 완료된 값이라고 가정).
        autostart=True면 생성과 동시에 백그라운드 작업 시작. 종료는 shutdown().
        """
        self._clock = clock or _utcnow
        self.queue_timeout = timedelta(seconds=queue_timeout)
        self.room_cleanup_interval = timedelta(seconds=room_cleanup_interval)
        self.rooms = RoomRegistry(max_rooms, self._clock)
        self.queue = WaitQueue(self._clock)
        self.on_room_reaped = on_room_reaped
        self._scheduler = MaintenanceScheduler(
            promote=self.promote_queued_users,
            expire=self.expire_queue_entries,
            reap=self.reap_lonely_rooms,
            promote_interval=queue_process_interval,
            expire_interval=queue_expiry_interval,
            # 정리 주기와 방치 기준 시간이 같음 → 실제 삭제는 혼자 된 뒤 1~2 주기 사이
            reap_interval=room_cleanup_interval,
        )
        if autostart:
            self.start()

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ChatService":
        return cls(
            max_rooms=settings.CHAT_MAX_ROOMS,
            queue_timeout=settings.CHAT_QUEUE_TIMEOUT_SECONDS,
            room_cleanup_interval=settings.CHAT_ROOM_CLEANUP_INTERVAL_SECONDS,
            queue_process_interval=settings.CHAT_QUEUE_PROCESS_INTERVAL_SECONDS,
            queue_expiry_interval=settings.CHAT_QUEUE_EXPIRY_INTERVAL_SECONDS,
            **kwargs,
        )

    # ── 수명 주기 ─────────────────────────────────────────

    def start(self) -> None:
        self._scheduler.start()

    def shutdown(self) -> None:
        self._scheduler.shutdown()

    @property
    def maintenance_running(self) -> bool:
        return self._scheduler.running

    # ── 매칭 ─────────────────────────────────────────────

    def start_chat(self, username: str) -> ChatAssignment:
        """
        이미 방에 있으면 그 방 → 대기 중인 방 합류 → 새 방 생성 → 대기열 순으로 시도.
        검색/생성 전체가 하나의 임계 구역 (다른 start_chat, promotion과 끼어들지 않음).
        실패하지 않음. 방이 없으면 대기열이 항상 fallback.
        """
        with self.queue.lock.write(), self.rooms.lock.write():
            room = self.rooms.find_room_containing(username)
            if room:
                return ChatAssignment(AssignmentStatus.room_assigned, "Already in room", room_code=room.code)

            room = self.rooms.find_waiting_room()
            if room:
                self.rooms.add_member(room, username)
                self._drop_from_queue(username)
                logger.info("start_chat: joined room code=%s user=%s", room.code, username)
                return ChatAssignment(AssignmentStatus.room_assigned, "Joined existing room", room_code=room.code)

            if self.rooms.has_capacity():
                room = self.rooms.create_room(username)
                self._drop_from_queue(username)
                return ChatAssignment(AssignmentStatus.room_assigned, "Created new room", room_code=room.code)

            position, added = self.queue.enqueue(username)
            if not added:
                return ChatAssignment(AssignmentStatus.queued, "Already in queue", position=position)
            logger.info("start_chat: queued user=%s position=%s", username, position)
            return ChatAssignment(
                AssignmentStatus.queued, f"Added to queue. Position: {position}", position=position,
            )

    def _drop_from_queue(self, username: str) -> None:
        # 대기열에 남아 있던 사용자가 재요청으로 방을 배정받은 경우 → promotion으로 간주해 제거
        if self.queue.remove(username):
            logger.info("start_chat: user=%s left queue by direct assignment", username)

    def join_room(self, room_code: str, username: str) -> Room:
        """
        WebSocket 연결 직전 호출 (입장 권한 확인 겸 멤버 추가).
        이미 멤버면 no-op. 반환은 방 복사본. 없는 방 → RoomNotFoundError, 다른 두 명으로 꽉 찬 방 → RoomFullError.
        """
        with self.rooms.lock.write():
            room = self.rooms.get(room_code)
            if room is None:
                logger.warning("join_room rejected: not found code=%s user=%s", room_code, username)
                raise RoomNotFoundError(room_code)
            if room.has_member(username):
                return room.snapshot()
            if room.is_full():
                logger.warning("join_room rejected: full code=%s user=%s", room_code, username)
                raise RoomFullError(room_code)
            self.rooms.add_member(room, username)
            return room.snapshot()

    def leave_room(self, room_code: str, username: str) -> None:
        """방/멤버가 없어도 조용히 무시. 연결 종료 시 무조건 호출할 수 있어야 함."""
        with self.rooms.lock.write():
            room = self.rooms.get(room_code)
            if room is None:
                return
            if self.rooms.remove_member(room, username):
                logger.info("leave_room code=%s user=%s remaining=%s", room_code, username, len(room.members))

    # ── 백그라운드 sweep ──────────────────────────────────

    def promote_queued_users(self) -> list[tuple[str, str]]:
        """
        대기열 앞에서부터 한 번 훑으며 방 배정. 대기 중인 방 우선, 없으면 여유가 있을 때 새 방.
        둘 다 안 되면 그 항목은 남겨두고 다음 항목으로. 반환: [(username, room_code), ...]
        """
        promoted: list[tuple[str, str]] = []

        def assign(entry: QueueEntry) -> bool:
            room = self.rooms.find_room_containing(entry.username)
            if room is None:
                room = self.rooms.find_waiting_room()
                if room is not None:
                    self.rooms.add_member(room, entry.username)
                elif self.rooms.has_capacity():
                    room = self.rooms.create_room(entry.username)
                else:
                    return False
            promoted.append((entry.username, room.code))
            return True

        with self.queue.lock.write(), self.rooms.lock.write():
            if not len(self.queue):
                return promoted
            self.queue.drain(assign)
        for username, code in promoted:
            logger.info("promoted from queue user=%s room=%s", username, code)
        return promoted

    def expire_queue_entries(self) -> list[str]:
        """queue_timeout 이상 기다린 항목 제거. 사용자는 다시 start_chat 해야 함."""
        with self.queue.lock.write():
            expired = self.queue.remove_expired(self.queue_timeout)
        names = [e.username for e in expired]
        if names:
            logger.info("queue entries expired: %s", names)
        return names

    def reap_lonely_rooms(self) -> list[str]:
        """혼자 남은 채 room_cleanup_interval 이상 변화 없는 방 삭제. 2명 방은 나이와 무관하게 유지."""
        with self.rooms.lock.write():
            lonely = self.rooms.lonely_rooms(self.room_cleanup_interval)
            for room in lonely:
                logger.info(
                    "lonely room reaped code=%s user=%s created_at=%s updated_at=%s",
                    room.code, room.members[0], room.created_at, room.updated_at,
                )
                self.rooms.delete(room.code)
        codes = [room.code for room in lonely]
        if self.on_room_reaped:
            for code in codes:
                try:
                    self.on_room_reaped(code)
                except Exception as e:
                    logger.warning("on_room_reaped code=%s: %s", code, e)
        return codes

    def run_maintenance(self) -> dict:
        """세 sweep을 지금 즉시 한 번씩 실행 (관리자 API/테스트용)."""
        return {
            "expired": self.expire_queue_entries(),
            "reaped": self.reap_lonely_rooms(),
            "promoted": self.promote_queued_users(),
        }

    # ── 조회 ─────────────────────────────────────────────

    def get_room(self, room_code: str) -> Optional[Room]:
        """복사본 반환. 반환값을 수정해도 레지스트리에는 영향 없음."""
        with self.rooms.lock.read():
            room = self.rooms.get(room_code)
            return room.snapshot() if room else None

    def get_waiting_rooms(self) -> list[Room]:
        with self.rooms.lock.read():
            return [room.snapshot() for room in self.rooms if room.is_waiting()]

    def get_queue_position(self, username: str) -> int:
        with self.queue.lock.read():
            return self.queue.position(username)

    def get_queue_size(self) -> int:
        with self.queue.lock.read():
            return self.queue.size()

    def stats(self) -> dict:
        with self.queue.lock.read(), self.rooms.lock.read():
            rooms = list(self.rooms)
            return {
                "rooms": len(rooms),
                "waiting_rooms": sum(1 for r in rooms if r.is_waiting()),
                "full_rooms": sum(1 for r in rooms if r.is_full()),
                "queue_size": self.queue.size(),
                "max_rooms": self.rooms.max_rooms,
            }
