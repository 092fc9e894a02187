"""
FastAPI 의존성. ChatService 인스턴스는 lifespan에서 app.state에 올려둠.
테스트에서는 app.dependency_overrides[get_chat_service]로 격리된 인스턴스를 주입.
"""
from starlette.requests import HTTPConnection

from app.services.chat_service import ChatService


def get_chat_service(conn: HTTPConnection) -> ChatService:
    """HTTP 요청과 WebSocket 모두에서 사용."""
    return conn.app.state.chat_service
