"""
방 코드 생성. base32 알파벳(32자) 8자리 랜덤 코드.
충돌 확률은 매우 낮지만 가정하지 않고 현재 레지스트리와 대조해 재시도.
"""
import secrets
from typing import Callable

ROOM_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
ROOM_CODE_LENGTH = 8
MAX_ATTEMPTS = 64


class RoomCodeExhaustedError(RuntimeError):
    """재시도 횟수 안에 빈 코드를 못 찾음. 코드 공간 설정이 잘못된 경우로 간주."""


def random_code(length: int = ROOM_CODE_LENGTH, alphabet: str = ROOM_CODE_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_room_code(
    is_taken: Callable[[str], bool],
    length: int = ROOM_CODE_LENGTH,
    alphabet: str = ROOM_CODE_ALPHABET,
    max_attempts: int = MAX_ATTEMPTS,
) -> str:
    """is_taken(code)가 False인 코드를 반환. max_attempts 초과 시 RoomCodeExhaustedError."""
    for _ in range(max_attempts):
        code = random_code(length, alphabet)
        if not is_taken(code):
            return code
    raise RoomCodeExhaustedError(
        f"room code space exhausted after {max_attempts} attempts (length={length}, alphabet={len(alphabet)})"
    )
