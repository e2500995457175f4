"""
周期任务抽象：只定义接口，roomkey 层实现具体后端
"""
from core.scheduler.base import PeriodicJob, ISchedulerBackend, SchedulerRegistry

__all__ = ["PeriodicJob", "ISchedulerBackend", "SchedulerRegistry"]
