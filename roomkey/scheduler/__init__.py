"""
定时任务 - APScheduler 后端与到期扫描任务
"""
from roomkey.scheduler.backend import APSchedulerBackend
from roomkey.scheduler.jobs import StayJobs, register_stay_jobs

__all__ = ["APSchedulerBackend", "StayJobs", "register_stay_jobs"]
