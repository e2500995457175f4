"""
APScheduler 调度后端
"""
import logging
from typing import Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from core.scheduler import ISchedulerBackend, PeriodicJob

logger = logging.getLogger(__name__)


class APSchedulerBackend(ISchedulerBackend):
    """BackgroundScheduler 上的固定间隔任务"""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        # 同一任务不并发执行，错过的轮次合并为一次
        self._scheduler = scheduler or BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )
        self._intervals: Dict[str, float] = {}

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("APScheduler started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler shut down")

    def schedule(self, job: PeriodicJob) -> None:
        seconds = job.interval.total_seconds()
        self._scheduler.add_job(
            job.func,
            trigger="interval",
            seconds=seconds,
            id=job.job_id,
            name=job.job_id,
            replace_existing=True,
        )
        self._intervals[job.job_id] = seconds
        logger.info(f"Job scheduled: {job.job_id} every {seconds:g}s")

    def remove_job(self, job_id: str) -> None:
        self._intervals.pop(job_id, None)
        try:
            self._scheduler.remove_job(job_id)
            logger.info(f"Job removed: {job_id}")
        except JobLookupError:
            logger.warning(f"Job not found for removal: {job_id}")

    def get_jobs(self) -> List[Dict]:
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run_time = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "interval_seconds": self._intervals.get(job.id),
                "next_run_time": next_run_time.isoformat() if next_run_time else None,
            })
        return jobs

    def run_now(self, job_id: str) -> None:
        job = self._scheduler.get_job(job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id}")
        job.func()
