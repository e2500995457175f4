"""
站内通知渠道 - 通过 NotificationService 写入 notifications 表
"""
import logging
from typing import Optional

from core.notification.channel import INotificationChannel, Recipient

logger = logging.getLogger(__name__)

RECIPIENT_KINDS = ("guest", "admin")


class InternalChannel(INotificationChannel):
    """站内通知渠道，支持 guest / admin 两类接收方"""

    def __init__(self, db_factory=None):
        self._db_factory = db_factory

    def send(
        self,
        recipient: Recipient,
        title: str,
        message: str,
        notification_type: Optional[str] = None,
    ) -> bool:
        if recipient.kind not in RECIPIENT_KINDS:
            logger.warning(f"Unsupported notification recipient: {recipient}")
            return False

        try:
            from roomkey.services.notification_service import NotificationService
            from roomkey.database import SessionLocal

            db = SessionLocal() if self._db_factory is None else self._db_factory()
            try:
                service = NotificationService(db)
                if recipient.kind == "guest":
                    service.notify_guest(recipient.id, title, message, notification_type)
                else:
                    service.create(title, message, recipient_admin_id=recipient.id,
                                   notification_type=notification_type)
                return True
            finally:
                db.close()
        except Exception as e:
            logger.error(f"Failed to send internal notification to {recipient}: {e}")
            return False

    def get_channel_type(self) -> str:
        return "internal"
