"""
pytest 설정: app 모듈을 찾을 수 있도록 backend 디렉터리를 Python 경로에 추가합니다.
프로젝트 루트 또는 backend에서 pytest를 실행해도 동작합니다.
ChatService는 테스트마다 새 인스턴스 (autostart=False + 가짜 시계) → 전역 상태 공유 없음.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")

from app.services.chat_service import ChatService  # noqa: E402


class FakeClock:
    """수동으로 진행시키는 UTC 시계."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_service(clock):
    """ChatService 팩토리. 테스트 끝나면 스케줄러까지 정리."""
    created: list[ChatService] = []

    def _make(max_rooms: int = 10, queue_timeout: float = 300, room_cleanup_interval: float = 600, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("autostart", False)
        service = ChatService(
            max_rooms=max_rooms,
            queue_timeout=queue_timeout,
            room_cleanup_interval=room_cleanup_interval,
            **kwargs,
        )
        created.append(service)
        return service

    yield _make
    for service in created:
        service.shutdown()


@pytest.fixture
def service(make_service):
    return make_service()
