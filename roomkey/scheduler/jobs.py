"""
到期扫描任务
每次运行使用独立会话；失败记录日志，由下一轮重试
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List

from core.scheduler import ISchedulerBackend, PeriodicJob
from roomkey.config import settings
from roomkey.database import SessionLocal
from roomkey.services.event_bus import event_bus, Event
from roomkey.services.expiry_service import ExpiryService

logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "stay_expiry"
NO_SHOW_JOB_ID = "stay_no_show"


class StayJobs:
    """到期提醒 / 自动退房 / 爽约回收任务"""

    def __init__(self, session_factory: Callable = None,
                 event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self._session_factory = session_factory or SessionLocal
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock

    def _run(self, name: str, passes: Callable[[ExpiryService], Dict[str, List[str]]]) -> Dict[str, List[str]]:
        db = self._session_factory()
        try:
            service = ExpiryService(db, self._publish_event, self._now)
            return passes(service)
        except Exception as e:
            db.rollback()
            logger.error(f"Scheduler job {name} failed, will retry next tick: {e}", exc_info=True)
            return {}
        finally:
            db.close()

    def run_expiry_tick(self) -> Dict[str, List[str]]:
        """先提醒，再自动退房"""
        return self._run(EXPIRY_JOB_ID, lambda service: {
            "warned": service.run_warning_pass(),
            "checked_out": service.run_expiry_pass(),
        })

    def run_no_show_tick(self) -> Dict[str, List[str]]:
        return self._run(NO_SHOW_JOB_ID, lambda service: {
            "released": service.run_no_show_sweep(),
        })


def register_stay_jobs(backend: ISchedulerBackend, jobs: StayJobs = None) -> StayJobs:
    """在调度后端上注册到期与爽约任务"""
    jobs = jobs or StayJobs()
    backend.schedule(PeriodicJob(
        job_id=EXPIRY_JOB_ID,
        func=jobs.run_expiry_tick,
        interval=timedelta(seconds=settings.EXPIRY_INTERVAL_SECONDS),
    ))
    backend.schedule(PeriodicJob(
        job_id=NO_SHOW_JOB_ID,
        func=jobs.run_no_show_tick,
        interval=timedelta(minutes=settings.NO_SHOW_INTERVAL_MINUTES),
    ))
    return jobs
