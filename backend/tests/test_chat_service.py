"""
매칭 엔진 테스트.
- start_chat: 새 방 / 합류 / 재호출 / 방 개수 초과 시 대기열
- join/leave 가드
- promotion, 대기열 만료, 혼자 남은 방 정리
- 동시 start_chat 에서 방 인원 불변식
"""
import threading

import pytest

from app.models.room import AssignmentStatus
from app.services.chat_service import RoomFullError, RoomNotFoundError


def _assert_invariants(service):
    for room in service.rooms:
        assert 1 <= len(room.members) <= 2
        assert len(set(room.members)) == len(room.members)
    assert len(service.rooms) <= service.rooms.max_rooms


# ── start_chat ──────────────────────────────────────────

def test_first_user_creates_room(service):
    r = service.start_chat("u1")
    assert r.status == AssignmentStatus.room_assigned
    assert r.message == "Created new room"
    room = service.get_room(r.room_code)
    assert room.members == ["u1"]


def test_second_user_joins_waiting_room(service):
    r1 = service.start_chat("u1")
    r2 = service.start_chat("u2")
    assert r2.status == AssignmentStatus.room_assigned
    assert r2.message == "Joined existing room"
    assert r2.room_code == r1.room_code
    assert service.get_room(r1.room_code).members == ["u1", "u2"]


def test_start_chat_idempotent(service):
    r1 = service.start_chat("u1")
    r2 = service.start_chat("u1")
    assert r2.status == AssignmentStatus.room_assigned
    assert r2.room_code == r1.room_code
    assert r2.message == "Already in room"
    assert len(service.rooms) == 1


def test_capacity_triggers_queue(make_service):
    service = make_service(max_rooms=1)
    r1 = service.start_chat("u1")
    r2 = service.start_chat("u2")
    assert r2.room_code == r1.room_code
    r3 = service.start_chat("u3")
    assert r3.status == AssignmentStatus.queued
    assert r3.position == 1
    assert r3.room_code is None
    assert r3.message == "Added to queue. Position: 1"

    again = service.start_chat("u3")
    assert again.status == AssignmentStatus.queued
    assert again.position == 1
    assert again.message == "Already in queue"
    assert service.get_queue_size() == 1


def test_third_user_gets_new_room_under_capacity(service):
    r1 = service.start_chat("u1")
    service.start_chat("u2")
    r3 = service.start_chat("u3")
    assert r3.status == AssignmentStatus.room_assigned
    assert r3.room_code != r1.room_code


def test_queued_user_assigned_directly_leaves_queue(make_service):
    service = make_service(max_rooms=1)
    code = service.start_chat("u1").room_code
    service.start_chat("u2")
    service.start_chat("u3")
    service.leave_room(code, "u1")

    r = service.start_chat("u3")
    assert r.status == AssignmentStatus.room_assigned
    assert r.room_code == code
    assert service.get_queue_position("u3") == 0
    # 이미 방에 있으므로 promotion에서 다시 배정되지 않음
    assert service.promote_queued_users() == []


# ── join / leave ────────────────────────────────────────

def test_join_unknown_room(service):
    with pytest.raises(RoomNotFoundError):
        service.join_room("NOPE0000", "u1")


def test_join_full_room(service):
    code = service.start_chat("u1").room_code
    service.start_chat("u2")
    with pytest.raises(RoomFullError):
        service.join_room(code, "u3")


def test_join_existing_member_is_noop(service, clock):
    code = service.start_chat("u1").room_code
    service.start_chat("u2")
    before = service.get_room(code)
    clock.advance(5)
    room = service.join_room(code, "u2")
    assert room.members == ["u1", "u2"]
    assert service.get_room(code).updated_at == before.updated_at


def test_join_waiting_room_adds_member(service):
    code = service.start_chat("u1").room_code
    room = service.join_room(code, "friend")
    assert room.members == ["u1", "friend"]
    assert service.get_waiting_rooms() == []


def test_leave_deletes_empty_room(service):
    code = service.start_chat("u1").room_code
    service.start_chat("u2")
    service.leave_room(code, "u1")
    assert service.get_room(code).members == ["u2"]
    service.leave_room(code, "u2")
    assert service.get_room(code) is None


def test_leave_never_errors(service):
    service.leave_room("NOPE0000", "ghost")
    code = service.start_chat("u1").room_code
    service.leave_room(code, "ghost")
    assert service.get_room(code).members == ["u1"]


# ── 조회 ────────────────────────────────────────────────

def test_get_room_returns_copy(service):
    code = service.start_chat("u1").room_code
    copy = service.get_room(code)
    copy.members.append("intruder")
    assert service.get_room(code).members == ["u1"]


def test_get_waiting_rooms(service):
    a = service.start_chat("a").room_code
    service.start_chat("b")
    c = service.start_chat("c").room_code
    waiting = service.get_waiting_rooms()
    assert [r.code for r in waiting] == [c]
    waiting[0].members.clear()
    assert service.get_room(c).members == ["c"]
    assert service.get_room(a).members == ["a", "b"]


def test_stats(make_service):
    service = make_service(max_rooms=2)
    for u in ["a", "b", "c", "d", "e"]:
        service.start_chat(u)
    assert service.stats() == {
        "rooms": 2,
        "waiting_rooms": 0,
        "full_rooms": 2,
        "queue_size": 1,
        "max_rooms": 2,
    }


# ── promotion ───────────────────────────────────────────

def test_promotion_after_room_freed(make_service):
    service = make_service(max_rooms=1)
    code = service.start_chat("u1").room_code
    service.start_chat("u2")
    service.start_chat("u3")

    service.leave_room(code, "u1")
    service.leave_room(code, "u2")
    assert service.get_room(code) is None

    promoted = service.promote_queued_users()
    assert len(promoted) == 1
    username, new_code = promoted[0]
    assert username == "u3"
    assert service.get_room(new_code).members == ["u3"]
    assert service.get_queue_position("u3") == 0
    assert service.start_chat("u3").room_code == new_code


def test_promotion_fills_waiting_room_fifo(make_service):
    service = make_service(max_rooms=1)
    code = service.start_chat("u1").room_code
    service.start_chat("u2")
    for u in ["A", "B", "C"]:
        service.start_chat(u)
    assert [service.get_queue_position(u) for u in "ABC"] == [1, 2, 3]

    service.leave_room(code, "u1")
    promoted = service.promote_queued_users()
    assert promoted == [("A", code)]
    assert service.get_room(code).members == ["u2", "A"]
    assert service.get_queue_position("B") == 1
    assert service.get_queue_position("C") == 2


def test_promotion_pairs_queued_users(make_service):
    service = make_service(max_rooms=1)
    code = service.start_chat("u1").room_code
    service.start_chat("u2")
    for u in ["A", "B", "C"]:
        service.start_chat(u)
    service.leave_room(code, "u1")
    service.leave_room(code, "u2")

    promoted = service.promote_queued_users()
    assert [u for u, _ in promoted] == ["A", "B"]
    assert promoted[0][1] == promoted[1][1]
    assert service.get_queue_position("C") == 1


def test_promotion_noop_without_capacity(make_service):
    service = make_service(max_rooms=1)
    service.start_chat("u1")
    service.start_chat("u2")
    service.start_chat("u3")
    assert service.promote_queued_users() == []
    assert service.get_queue_position("u3") == 1


def test_promotion_empty_queue(service):
    assert service.promote_queued_users() == []


# ── 대기열 만료 ──────────────────────────────────────────

def test_expiry_drops_stale_entries(make_service, clock):
    service = make_service(max_rooms=1, queue_timeout=60)
    service.start_chat("u1")
    service.start_chat("u2")
    service.start_chat("old")
    clock.advance(30)
    service.start_chat("new")

    clock.advance(29)
    assert service.expire_queue_entries() == []
    clock.advance(1)
    assert service.expire_queue_entries() == ["old"]
    assert service.get_queue_position("old") == 0
    assert service.get_queue_position("new") == 1

    # 만료된 사용자는 다시 요청하면 맨 뒤로
    assert service.start_chat("old").position == 2


# ── 혼자 남은 방 정리 ────────────────────────────────────

def test_reap_lonely_room(make_service, clock):
    reaped_codes = []
    service = make_service(room_cleanup_interval=60, on_room_reaped=reaped_codes.append)
    lonely = service.start_chat("alone").room_code
    clock.advance(59)
    assert service.reap_lonely_rooms() == []
    clock.advance(1)
    assert service.reap_lonely_rooms() == [lonely]
    assert service.get_room(lonely) is None
    assert reaped_codes == [lonely]


def test_full_room_never_reaped(make_service, clock):
    service = make_service(room_cleanup_interval=60)
    code = service.start_chat("a").room_code
    service.start_chat("b")
    clock.advance(10_000)
    assert service.reap_lonely_rooms() == []
    assert service.get_room(code).members == ["a", "b"]


def test_room_left_alone_uses_updated_at(make_service, clock):
    service = make_service(room_cleanup_interval=60)
    code = service.start_chat("a").room_code
    service.start_chat("b")
    clock.advance(500)
    service.leave_room(code, "b")
    clock.advance(30)
    assert service.reap_lonely_rooms() == []
    clock.advance(30)
    assert service.reap_lonely_rooms() == [code]


def test_reap_callback_error_does_not_propagate(make_service, clock):
    def boom(code):
        raise RuntimeError("transport gone")

    service = make_service(room_cleanup_interval=60, on_room_reaped=boom)
    code = service.start_chat("alone").room_code
    clock.advance(60)
    assert service.reap_lonely_rooms() == [code]


def test_run_maintenance(make_service, clock):
    service = make_service(max_rooms=1, queue_timeout=100, room_cleanup_interval=60)
    lonely = service.start_chat("alone").room_code
    service.join_room(lonely, "pal")
    service.start_chat("q1")
    service.leave_room(lonely, "pal")
    clock.advance(100)

    result = service.run_maintenance()
    assert result["expired"] == ["q1"]
    assert result["reaped"] == [lonely]
    assert result["promoted"] == []


# ── 동시성 ──────────────────────────────────────────────

def test_concurrent_start_chat_keeps_invariants(make_service):
    service = make_service(max_rooms=5)
    users = [f"user{i}" for i in range(40)]
    results = {}
    barrier = threading.Barrier(len(users))

    def worker(u):
        barrier.wait()
        results[u] = service.start_chat(u)

    threads = [threading.Thread(target=worker, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    _assert_invariants(service)
    assigned = [u for u, r in results.items() if r.status == AssignmentStatus.room_assigned]
    queued = [u for u, r in results.items() if r.status == AssignmentStatus.queued]
    assert len(assigned) == 10
    assert len(queued) == 30
    assert sorted(service.get_queue_position(u) for u in queued) == list(range(1, 31))
    for u in assigned:
        assert u in service.get_room(results[u].room_code).members


def test_concurrent_leave_and_promote(make_service):
    service = make_service(max_rooms=3)
    for i in range(6):
        service.start_chat(f"seat{i}")
    for i in range(6):
        service.start_chat(f"wait{i}")
    rooms = [(r.code, list(r.members)) for r in service.rooms]

    def leaver():
        for code, members in rooms:
            for m in members:
                service.leave_room(code, m)

    def promoter():
        for _ in range(20):
            service.promote_queued_users()

    threads = [threading.Thread(target=leaver), threading.Thread(target=promoter)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    service.promote_queued_users()

    _assert_invariants(service)
    assert service.get_queue_size() == 0
    placed = sorted(m for r in service.rooms for m in r.members)
    assert placed == sorted(f"wait{i}" for i in range(6))
