"""
到期服务 - 定时任务调用的三个扫描
与请求路径使用同一组条件写入，不绕过转换表
单个房间失败只记录日志，下一轮重试
"""
from datetime import datetime, timedelta
from typing import Callable, List
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roomkey.config import settings
from roomkey.models.ontology import Room, RoomStatus, CheckOutReason
from roomkey.models.events import EventType, CheckoutWarningData
from roomkey.services.errors import StayError
from roomkey.services.event_bus import event_bus, Event
from roomkey.services.room_service import RoomService
from roomkey.services.checkout_service import CheckOutService

logger = logging.getLogger(__name__)


class ExpiryService:
    """到期提醒 / 自动退房 / 爽约回收"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock or datetime.now
        self.rooms = RoomService(db, self._publish_event, self._now)
        self.checkout = CheckOutService(db, self._publish_event, self._now)

    def run_warning_pass(self) -> List[str]:
        """
        到期提醒：0 < check_out - now <= WARNING_WINDOW_MINUTES
        先条件写入 warning_sent，成功后再发事件，每次入住只提醒一次
        """
        now = self._now()
        window_end = now + timedelta(minutes=settings.WARNING_WINDOW_MINUTES)
        candidates = self.db.query(Room).filter(
            Room.status == RoomStatus.OCCUPIED,
            Room.check_out.isnot(None),
            Room.warning_sent.is_(False),
            Room.check_out > now,
            Room.check_out <= window_end,
        ).order_by(Room.room_number).all()

        warned = []
        for room in candidates:
            if not self.rooms.mark_warning_sent(room.id):
                continue
            minutes_left = max(int((room.check_out - now).total_seconds() // 60), 0)
            self._publish_event(Event(
                event_type=EventType.STAY_CHECKOUT_WARNING,
                timestamp=now,
                data=CheckoutWarningData(
                    room_id=room.id,
                    room_number=room.room_number,
                    guest_id=room.guest_id,
                    check_out=room.check_out,
                    minutes_left=minutes_left,
                ).to_dict(),
                source="expiry_service"
            ))
            warned.append(room.room_number)

        if warned:
            logger.info(f"Sent check-out warning for rooms {warned}")
        return warned

    def run_expiry_pass(self) -> List[str]:
        """到期自动退房：occupied 且 now >= check_out"""
        now = self._now()
        expired = self.db.query(Room).filter(
            Room.status == RoomStatus.OCCUPIED,
            Room.check_out.isnot(None),
            Room.check_out <= now,
        ).order_by(Room.room_number).all()

        checked_out = []
        for room in expired:
            room_number = room.room_number
            try:
                result = self.checkout.check_out(room.id, reason=CheckOutReason.AUTO.value)
            except (StayError, SQLAlchemyError) as e:
                self.db.rollback()
                logger.error(f"Auto check-out failed for room {room_number}: {e}", exc_info=True)
                continue
            if result.changed:
                checked_out.append(room_number)

        checked_out.extend(self._resume_interrupted(checked_out))
        if checked_out:
            logger.info(f"Auto checked out rooms {checked_out}")
        return checked_out

    def _resume_interrupted(self, skip: List[str]) -> List[str]:
        """上一轮联动中途失败的房间：房间已释放但入住记录仍未结束"""
        resumed = []
        for stay in self.checkout.stays.find_stale():
            stay_id = stay.id
            try:
                result = self.checkout.resume_stale(stay)
            except (StayError, SQLAlchemyError) as e:
                self.db.rollback()
                logger.error(f"Resuming check-out of stay {stay_id} failed: {e}", exc_info=True)
                continue
            room_number = result.room.room_number
            if result.changed and room_number not in skip and room_number not in resumed:
                resumed.append(room_number)
        return resumed

    def run_no_show_sweep(self) -> List[str]:
        """
        爽约回收：reserved 且从未刷卡，预计到店时间（缺省为登记时间）
        超过 NO_SHOW_GRACE_MINUTES 仍未入住
        """
        now = self._now()
        grace = timedelta(minutes=settings.NO_SHOW_GRACE_MINUTES)
        reserved = self.db.query(Room).filter(
            Room.status == RoomStatus.RESERVED,
            Room.check_in.is_(None),
        ).order_by(Room.room_number).all()

        released = []
        for room in reserved:
            expected = room.expected_check_in or room.registered_at
            if expected is None or expected + grace > now:
                continue
            room_number = room.room_number
            try:
                result = self.checkout.release_no_show(room.id)
            except (StayError, SQLAlchemyError) as e:
                self.db.rollback()
                logger.error(f"No-show release failed for room {room_number}: {e}", exc_info=True)
                continue
            if result.changed:
                released.append(room_number)

        if released:
            logger.info(f"Released no-show rooms {released}")
        return released
