"""
事件总线 - 进程内同步发布/订阅

服务只在条件写入提交成功、且确实发生了状态变化之后发布事件；
订阅方（站内通知等）的异常只记录日志，已提交的台账不回滚。
"""
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, DefaultDict, Dict, List, Optional
import logging
import threading
import uuid

logger = logging.getLogger(__name__)

Handler = Callable[["Event"], None]

HISTORY_SIZE = 100


@dataclass
class Event:
    """领域事件；event_type 取自 EventType，data 为 *Data.to_dict() 的结果"""
    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """
    进程级单例

        event_bus.subscribe(EventType.ROOM_CHECKED_OUT, handler)
        event_bus.publish(Event(...))
    """

    _instance: Optional["EventBus"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "EventBus":
        with cls._instance_lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._subscribers: DefaultDict[str, List[Handler]] = defaultdict(list)
                instance._history: deque = deque(maxlen=HISTORY_SIZE)
                instance._lock = threading.Lock()
                cls._instance = instance
                logger.info("EventBus initialized")
        return cls._instance

    def subscribe(self, event_type: str, handler: Handler) -> None:
        """同一处理器对同一事件类型只登记一次"""
        with self._lock:
            handlers = self._subscribers[event_type]
            if handler in handlers:
                return
            handlers.append(handler)
        logger.info(f"Handler {_handler_name(handler)} subscribed to {event_type}")

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type)
            if not handlers or handler not in handlers:
                return
            handlers.remove(handler)
        logger.info(f"Handler {_handler_name(handler)} unsubscribed from {event_type}")

    def publish(self, event: Event) -> int:
        """
        按订阅顺序同步调用处理器

        Returns:
            失败的处理器数量
        """
        self._history.append(event)
        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, ()))

        failures = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                failures += 1
                logger.error(
                    f"Event handler {_handler_name(handler)} error for {event.event_type} "
                    f"({event.event_id}): {e}",
                    exc_info=True
                )
        if handlers:
            logger.info(
                f"Published {event.event_type} from {event.source} to {len(handlers)} handlers"
                + (f", {failures} failed" if failures else "")
            )
        return failures

    def get_history(self, event_type: Optional[str] = None, limit: int = 50) -> List[Event]:
        """最近发布的事件，最新的在前"""
        events = [e for e in reversed(self._history)
                  if event_type is None or e.event_type == event_type]
        return events[:limit]

    def get_subscribers(self, event_type: Optional[str] = None) -> Dict[str, List[str]]:
        with self._lock:
            types = [event_type] if event_type else list(self._subscribers)
            return {
                et: [_handler_name(h) for h in self._subscribers.get(et, ())]
                for et in types
            }

    def clear_subscribers(self) -> None:
        """清空所有订阅（用于测试）"""
        with self._lock:
            self._subscribers.clear()

    def clear_history(self) -> None:
        self._history.clear()


# 全局事件总线实例
event_bus = EventBus()
