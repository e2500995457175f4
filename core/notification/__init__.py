"""
通知渠道抽象：只定义接口，roomkey 层实现具体渠道
"""
from core.notification.channel import Recipient, INotificationChannel, NotificationChannelRegistry

__all__ = ["Recipient", "INotificationChannel", "NotificationChannelRegistry"]
