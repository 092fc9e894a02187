from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings
from typing import List, Optional

# Windows/리로드 시 환경변수 인코딩 깨짐 방지: .env를 UTF-8(에러 시 대체)으로 먼저 로드
# config.py 위치: backend/app/core/config.py → 3단계 상위가 backend/
_env_dir = Path(__file__).resolve().parent.parent.parent
_env_path = _env_dir / ".env"
if _env_path.exists():
    from dotenv import load_dotenv
    load_dotenv(_env_path, encoding="utf-8", override=False)


class Settings(BaseSettings):
    # 매칭 (시간 단위: 초)
    CHAT_MAX_ROOMS: int = Field(100, gt=0)
    CHAT_QUEUE_TIMEOUT_SECONDS: float = Field(300, gt=0)
    # 혼자 남은 방 정리 주기 = 방치 기준 시간
    CHAT_ROOM_CLEANUP_INTERVAL_SECONDS: float = Field(600, gt=0)
    CHAT_QUEUE_PROCESS_INTERVAL_SECONDS: float = Field(5, gt=0)
    CHAT_QUEUE_EXPIRY_INTERVAL_SECONDS: float = Field(30, gt=0)

    # WebSocket 메시지 한 건 최대 크기 (바이트). 넘으면 연결 종료
    CHAT_MAX_MESSAGE_BYTES: int = Field(512, gt=0)

    # CORS
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # App
    APP_ENV: str = "development"
    APP_TITLE: str = "ChatMix API"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Admin (관리자용: 매칭 상태 조회, sweep 즉시 실행)
    ADMIN_SECRET: Optional[str] = None

    @property
    def origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    class Config:
        # backend/.env 절대 경로로 고정 (cwd와 무관)
        env_file = str(_env_path.resolve())
        env_file_encoding = "utf-8"


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        raise RuntimeError(f"설정값이 올바르지 않습니다. 환경변수 또는 .env 파일을 확인하세요: {_env_path}\n{e}") from e


settings = _load_settings()
