"""
周期任务抽象：域无关

roomkey 层声明 PeriodicJob，交给 ISchedulerBackend 的具体实现（APScheduler 等）按固定间隔执行。
同一任务不应重叠执行；错过的轮次合并为一次，由实现保证。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional


@dataclass(frozen=True)
class PeriodicJob:
    """
    固定间隔任务

    Attributes:
        job_id: 任务唯一标识
        func: 无参可调用对象，异常由调用方自行记录
        interval: 执行间隔
    """

    job_id: str
    func: Callable[[], object]
    interval: timedelta

    def __post_init__(self):
        if self.interval.total_seconds() <= 0:
            raise ValueError(f"Job {self.job_id}: interval must be positive")


class ISchedulerBackend(ABC):
    """调度后端接口"""

    @abstractmethod
    def start(self) -> None:
        """启动调度"""

    @abstractmethod
    def shutdown(self) -> None:
        """停止调度，不等待正在执行的任务"""

    @abstractmethod
    def schedule(self, job: PeriodicJob) -> None:
        """登记任务；同 job_id 已存在时替换"""

    @abstractmethod
    def remove_job(self, job_id: str) -> None:
        """移除任务，不存在时忽略"""

    @abstractmethod
    def get_jobs(self) -> List[Dict]:
        """已登记任务，每项至少包含 id, interval_seconds, next_run_time"""

    @abstractmethod
    def run_now(self, job_id: str) -> None:
        """在当前线程立即执行一次"""


class SchedulerRegistry:
    """当前进程使用的调度后端（单例）"""

    _instance: Optional["SchedulerRegistry"] = None

    def __new__(cls) -> "SchedulerRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._backend = None
        return cls._instance

    def set_backend(self, backend: ISchedulerBackend) -> None:
        self._backend = backend

    def get_backend(self) -> Optional[ISchedulerBackend]:
        return self._backend

    def has_backend(self) -> bool:
        return self._backend is not None

    def clear(self) -> None:
        """清除后端（用于测试与关闭）"""
        self._backend = None
