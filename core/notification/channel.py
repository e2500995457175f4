"""
通知渠道抽象：域无关

接收方用 Recipient(kind, id) 表示，字符串形式为 "<kind>:<id>"（如 "guest:12"、"admin:3"）。
渠道只负责投递；发送失败返回 False，不抛异常，调用方记录日志即可。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Recipient:
    kind: str
    id: int

    @classmethod
    def parse(cls, value: str) -> "Recipient":
        """解析 "<kind>:<id>"，格式错误抛 ValueError"""
        kind, sep, raw_id = value.partition(":")
        if not sep or not kind or not raw_id.isdigit():
            raise ValueError(f"Invalid recipient: {value!r}")
        return cls(kind=kind, id=int(raw_id))

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


class INotificationChannel(ABC):
    """通知渠道接口"""

    @abstractmethod
    def send(
        self,
        recipient: Recipient,
        title: str,
        message: str,
        notification_type: Optional[str] = None,
    ) -> bool:
        """投递一条通知，返回是否成功"""

    @abstractmethod
    def get_channel_type(self) -> str:
        """渠道类型标识，如 'internal'"""


class NotificationChannelRegistry:
    """
    通知渠道注册表（单例）

    roomkey 在 lifespan 中注册：
        NotificationChannelRegistry().register(InternalChannel(SessionLocal))
    """

    _instance: Optional["NotificationChannelRegistry"] = None

    def __new__(cls) -> "NotificationChannelRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._channels = {}
        return cls._instance

    def register(self, channel: INotificationChannel) -> None:
        self._channels[channel.get_channel_type()] = channel

    def get_channel(self, channel_type: str) -> Optional[INotificationChannel]:
        return self._channels.get(channel_type)

    def send(
        self,
        channel_type: str,
        recipient: Recipient,
        title: str,
        message: str,
        notification_type: Optional[str] = None,
    ) -> bool:
        """通过指定渠道投递；渠道未注册时返回 False"""
        channel = self.get_channel(channel_type)
        if channel is None:
            return False
        return channel.send(recipient, title, message, notification_type)

    def clear(self) -> None:
        """清除所有渠道（用于测试）"""
        self._channels.clear()
