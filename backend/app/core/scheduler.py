"""
채팅 매칭 백그라운드 작업 (대기열 promotion / 대기열 만료 / 혼자 남은 방 정리).
락만 잡고 메모리만 건드리는 동기 작업이므로 BackgroundScheduler 사용.
ChatService 인스턴스마다 스케줄러 하나 (전역 싱글톤 아님 → 테스트에서 인스턴스별로 띄우고 내릴 수 있음).
"""
import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


def _guarded(name: str, job: Callable[[], list]) -> Callable[[], None]:
    """작업 예외가 스케줄러 스레드를 죽이지 않도록 감쌈. 처리 건수가 있을 때만 로그."""
    def run():
        try:
            done = job()
            if done:
                logger.info("%s: %s processed", name, len(done))
        except Exception as e:
            logger.exception("%s job failed: %s", name, e)
    return run


class MaintenanceScheduler:
    def __init__(
        self,
        promote: Callable[[], list],
        expire: Callable[[], list],
        reap: Callable[[], list],
        promote_interval: float,
        expire_interval: float,
        reap_interval: float,
    ):
        self._jobs = [
            ("chat_promote_queue", _guarded("chat promote_queue", promote), promote_interval),
            ("chat_expire_queue", _guarded("chat expire_queue", expire), expire_interval),
            ("chat_reap_lonely_rooms", _guarded("chat reap_lonely_rooms", reap), reap_interval),
        ]
        self._scheduler = BackgroundScheduler()
        self._started = False

    @property
    def running(self) -> bool:
        return self._started and self._scheduler.running

    def start(self) -> None:
        if self._started:
            return
        for job_id, func, seconds in self._jobs:
            self._scheduler.add_job(
                func, "interval", seconds=seconds, id=job_id,
                coalesce=True, max_instances=1,
            )
        self._scheduler.start()
        self._started = True
        logger.info(
            "chat scheduler started (%s)",
            ", ".join(f"{job_id}={seconds}s" for job_id, _, seconds in self._jobs),
        )

    def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        try:
            # 실행 중인 sweep이 끝날 때까지 대기 → 테스트 종료 후 타이머가 남지 않음
            self._scheduler.shutdown(wait=True)
            logger.info("chat scheduler shutdown")
        except Exception as e:
            logger.warning("chat scheduler shutdown: %s", e)
