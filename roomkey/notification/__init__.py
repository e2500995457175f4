"""
通知渠道实现
"""
from roomkey.notification.internal_channel import InternalChannel

__all__ = ["InternalChannel"]
