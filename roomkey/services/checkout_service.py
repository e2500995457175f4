"""
退房服务 - 退房联动
房间释放 → 客人凭证释放 → 关闭入住记录 → 发布退房事件
每一步都是独立的条件写入；中途失败留下的未结束入住记录由 resume_stale 补完
（重复退房、到期扫描、同一客人再次登记都会触发）
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional
import logging

from sqlalchemy.orm import Session

from roomkey.models.ontology import Room, RoomStatus, RfidTag, StayRecord, CheckOutReason
from roomkey.models.events import EventType, RoomCheckedOutData
from roomkey.services.event_bus import event_bus, Event
from roomkey.services.room_service import RoomService, HELD_STATUSES
from roomkey.services.rfid_service import RfidService
from roomkey.services.stay_record_service import StayRecordService

logger = logging.getLogger(__name__)


@dataclass
class CheckOutResult:
    room: Room
    changed: bool
    reason: Optional[str] = None
    guest_id: Optional[int] = None
    stay_record: Optional[StayRecord] = None
    released_rfids: List[RfidTag] = field(default_factory=list)


class CheckOutService:
    """退房服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock or datetime.now
        self.rooms = RoomService(db, self._publish_event, self._now)
        self.rfids = RfidService(db, self._publish_event, self._now)
        self.stays = StayRecordService(db, self._publish_event, self._now)

    def check_out(self, room_id: int, reason: Optional[str] = None) -> CheckOutResult:
        """
        退房（管理员操作或到期自动退房）
        房间已是 available 时只补完上次中断的联动，没有可补的则幂等返回
        未给原因时：在到期前退房记为 Early Check-Out，否则为 Check-Out
        """
        now = self._now()
        released = self.rooms.release(room_id, trigger="check_out")
        if not released.changed:
            result = CheckOutResult(room=released.room, changed=False)
            for stay in self.stays.find_stale(room_id=room_id):
                result = self.resume_stale(stay, reason)
            return result

        if not reason:
            ends_at = released.previous_check_out
            early = released.previous_status == RoomStatus.OCCUPIED and ends_at is not None and now < ends_at
            reason = (CheckOutReason.EARLY if early else CheckOutReason.STANDARD).value

        return self._cascade(released.room, released.previous_guest_id, reason, now,
                             EventType.ROOM_CHECKED_OUT)

    def release_no_show(self, room_id: int) -> CheckOutResult:
        """
        爽约释放：仅 reserved 且从未刷卡的房间
        关闭入住记录（No-Show）并释放凭证
        """
        now = self._now()
        released = self.rooms.release(room_id, trigger="no_show")
        if not released.changed:
            return CheckOutResult(room=released.room, changed=False)
        return self._cascade(released.room, released.previous_guest_id, CheckOutReason.NO_SHOW.value,
                             now, EventType.ROOM_NO_SHOW)

    def resume_stale(self, stay: StayRecord, reason: Optional[str] = None) -> CheckOutResult:
        """
        补完中断的退房联动：入住记录未结束，但房间已释放或已转给他人

        客人名下仍有 reserved / occupied 房间时不动凭证；
        未给原因时由入住记录按是否提前离店取 Early / Auto
        """
        room = self.rooms.get_room(stay.room_id)
        if room.guest_id == stay.guest_id and room.status in HELD_STATUSES:
            return CheckOutResult(room=room, changed=False)

        logger.warning(
            f"Resuming interrupted check-out of stay {stay.id} "
            f"(room {room.room_number}, guest {stay.guest_id})"
        )
        release_tags = not self.rooms.get_rooms_held_by(stay.guest_id)
        return self._cascade(room, stay.guest_id, reason, self._now(), EventType.ROOM_CHECKED_OUT,
                             release_tags=release_tags)

    def _cascade(self, room: Room, guest_id: Optional[int], reason: Optional[str], now: datetime,
                 event_type: EventType, release_tags: bool = True) -> CheckOutResult:
        tags = []
        stay_record = None
        if guest_id is not None:
            if release_tags:
                tags = self.rfids.release_for_guest(guest_id)
            stay_record = self.stays.close_open_for(guest_id, room.id, reason=reason, closed_at=now)
            if stay_record is None:
                logger.warning(f"No open stay record for guest {guest_id} in room {room.room_number}")
            elif not reason:
                reason = stay_record.check_out_reason
        reason = reason or CheckOutReason.STANDARD.value

        logger.info(
            f"Room {room.room_number} checked out ({reason}), "
            f"guest {guest_id}, released {len(tags)} RFID tag(s)"
        )
        self._publish_event(Event(
            event_type=event_type,
            timestamp=now,
            data=RoomCheckedOutData(
                room_id=room.id,
                room_number=room.room_number,
                guest_id=guest_id,
                reason=reason,
                stay_record_id=stay_record.id if stay_record else None,
                was_early=bool(stay_record.was_early_checkout) if stay_record else False,
                released_rfids=len(tags),
                check_out_time=now,
            ).to_dict(),
            source="checkout_service"
        ))
        return CheckOutResult(
            room=room,
            changed=True,
            reason=reason,
            guest_id=guest_id,
            stay_record=stay_record,
            released_rfids=tags,
        )
