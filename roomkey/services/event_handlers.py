"""
事件处理器 - 订阅领域事件并发送通知
通知失败只记录日志，不影响已完成的状态迁移
"""
from typing import Callable, List, Optional
import logging

from core.notification.channel import NotificationChannelRegistry, Recipient
from roomkey.services.event_bus import event_bus, Event
from roomkey.models.events import EventType
from roomkey.models.ontology import Admin, NotificationType
from roomkey.database import SessionLocal

logger = logging.getLogger(__name__)


class EventHandlers:
    """
    事件处理器集合

    支持依赖注入以便于测试：
    - db_session_factory: 数据库会话工厂（查询接收通知的管理员）
    - channel_registry: 通知渠道注册表
    """

    def __init__(
        self,
        db_session_factory: Callable = None,
        channel_registry: NotificationChannelRegistry = None,
        channel_type: str = "internal"
    ):
        self._db_session_factory = db_session_factory or SessionLocal
        self._registry = channel_registry or NotificationChannelRegistry()
        self._channel_type = channel_type
        self._registered = False

    def _get_db(self):
        return self._db_session_factory()

    def _active_admin_ids(self) -> List[int]:
        db = self._get_db()
        try:
            return [row.id for row in db.query(Admin.id).filter(Admin.is_active.is_(True)).order_by(Admin.id)]
        finally:
            db.close()

    def _send(self, recipient: Recipient, title: str, message: str, notification_type: str) -> bool:
        sent = self._registry.send(
            self._channel_type, recipient, title, message, notification_type
        )
        if not sent:
            logger.warning(f"Notification '{title}' to {recipient} was not delivered")
        return sent

    def _notify_admins(self, title: str, message: str, notification_type: str) -> None:
        for admin_id in self._active_admin_ids():
            self._send(Recipient("admin", admin_id), title, message, notification_type)

    def handle_room_checked_out(self, event: Event) -> None:
        """
        处理退房事件：通知原住客与所有管理员
        """
        try:
            data = event.data
            room_number = data.get('room_number')
            reason = data.get('reason') or 'Check-Out'
            guest_id: Optional[int] = data.get('guest_id')

            if guest_id:
                self._send(
                    Recipient("guest", guest_id), reason,
                    f"You have been checked out of Room #{room_number}.",
                    NotificationType.ROOM_STATUS.value,
                )
            self._notify_admins(
                "Room Checked Out",
                f"Room #{room_number} was checked out (ID: {data.get('room_id')}). Reason: {reason}.",
                NotificationType.ROOM_STATUS.value,
            )
            logger.info(f"Check-out notifications sent for room {room_number}")
        except Exception as e:
            logger.error(f"Failed to send check-out notifications: {e}", exc_info=True)

    def handle_checkout_warning(self, event: Event) -> None:
        """
        处理到期提醒事件：通知客人与所有管理员
        """
        try:
            data = event.data
            room_number = data.get('room_number')
            minutes_left = data.get('minutes_left')
            guest_id = data.get('guest_id')

            if guest_id:
                self._send(
                    Recipient("guest", guest_id),
                    "10 Minutes Left for Your Stay",
                    f"Your scheduled check-out time is almost here (Room #{room_number}). "
                    f"Please prepare to check out soon.",
                    NotificationType.CHECKOUT_REMINDER.value,
                )
            self._notify_admins(
                "Guest Check-Out Reminder",
                f"Room #{room_number} has only {minutes_left} minutes left until check-out.",
                NotificationType.CHECKOUT_REMINDER.value,
            )
        except Exception as e:
            logger.error(f"Failed to send check-out warning: {e}", exc_info=True)

    def handle_room_no_show(self, event: Event) -> None:
        """处理爽约事件：通知管理员房间已回收"""
        try:
            data = event.data
            room_number = data.get('room_number')
            self._notify_admins(
                "Reservation Released",
                f"Room #{room_number} was released (ID: {data.get('room_id')}). "
                f"Reason: {data.get('reason')}.",
                NotificationType.ROOM_STATUS.value,
            )
        except Exception as e:
            logger.error(f"Failed to send no-show notification: {e}", exc_info=True)

    def register_handlers(self, event_bus_instance=None) -> None:
        """注册所有事件处理器"""
        if self._registered:
            return

        bus = event_bus_instance or event_bus

        bus.subscribe(EventType.ROOM_CHECKED_OUT, self.handle_room_checked_out)
        bus.subscribe(EventType.STAY_CHECKOUT_WARNING, self.handle_checkout_warning)
        bus.subscribe(EventType.ROOM_NO_SHOW, self.handle_room_no_show)

        self._registered = True
        logger.info("Event handlers registered successfully")

    def unregister_handlers(self, event_bus_instance=None) -> None:
        """取消注册所有事件处理器（用于测试）"""
        bus = event_bus_instance or event_bus

        bus.unsubscribe(EventType.ROOM_CHECKED_OUT, self.handle_room_checked_out)
        bus.unsubscribe(EventType.STAY_CHECKOUT_WARNING, self.handle_checkout_warning)
        bus.unsubscribe(EventType.ROOM_NO_SHOW, self.handle_room_no_show)

        self._registered = False
        logger.info("Event handlers unregistered")


# 全局事件处理器实例
event_handlers = EventHandlers()


def register_event_handlers():
    """注册所有事件处理器（应用启动时调用）"""
    event_handlers.register_handlers()
