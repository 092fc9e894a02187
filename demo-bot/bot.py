"""
ChatMix 데모 봇
N명의 익명 사용자를 동시에 매칭 요청하고 배정 결과를 출력.

사용법:
  python bot.py --users 6 --url http://localhost:8000
"""
import argparse
import os
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed

from client import ChatMixClient

BASE_URL_DEFAULT = os.environ.get("CHATMIX_URL", "http://localhost:8000")


def _match_one(base_url: str, username: str, poll_sec: float, leave: bool) -> tuple[str, str | None]:
    client = ChatMixClient(username, base_url=base_url)
    first = client.start_chat()
    if first["status"] == "queued":
        print(f"[Bot] {username}: 대기열 {first['position']}번")
    room = client.wait_for_room(poll_sec=poll_sec)
    print(f"[Bot] {username}: 방 배정 {room}")
    if room and leave:
        client.leave(room)
    return username, room


def run(base_url: str, users: int, poll_sec: float, leave: bool) -> int:
    prefix = f"demo{int(time.time()) % 100000}"
    names = [f"{prefix}_{i}" for i in range(users)]
    rooms: dict[str, list[str]] = defaultdict(list)
    unmatched = []

    with ThreadPoolExecutor(max_workers=users) as pool:
        futures = [pool.submit(_match_one, base_url, n, poll_sec, leave) for n in names]
        for fut in as_completed(futures):
            username, room = fut.result()
            if room:
                rooms[room].append(username)
            else:
                unmatched.append(username)

    print(f"[ChatMix Bot] 방 {len(rooms)}개, 미배정 {len(unmatched)}명")
    for code, members in sorted(rooms.items()):
        print(f"  {code}: {', '.join(sorted(members))}")
    return 1 if unmatched else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--url", default=BASE_URL_DEFAULT)
    parser.add_argument("--users", type=int, default=4)
    parser.add_argument("--poll-sec", type=float, default=2.0)
    parser.add_argument("--leave", action="store_true", help="배정 직후 방 나가기")
    args = parser.parse_args()

    raise SystemExit(run(args.url, args.users, args.poll_sec, args.leave))
