"""
站内通知写入
推送投递由外部服务完成，这里只落库
"""
from typing import Optional

from sqlalchemy.orm import Session

from roomkey.models.ontology import Notification


class NotificationService:
    """通知服务"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, title: str, message: str, recipient_guest_id: Optional[int] = None,
               recipient_admin_id: Optional[int] = None,
               notification_type: Optional[str] = None) -> Notification:
        if recipient_guest_id is None and recipient_admin_id is None:
            raise ValueError("通知必须指定接收方")
        notification = Notification(
            recipient_guest_id=recipient_guest_id,
            recipient_admin_id=recipient_admin_id,
            title=title,
            message=message,
            notification_type=notification_type,
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def notify_guest(self, guest_id: int, title: str, message: str,
                     notification_type: Optional[str] = None) -> Notification:
        return self.create(title, message, recipient_guest_id=guest_id,
                           notification_type=notification_type)
