"""
前台登记流程
一次登记产出 (reserved 房间, assigned 凭证, 未结束入住记录) 三元组
步骤之间没有跨实体事务：每一步都是条件写入，整个流程可重复调用
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
import logging

from sqlalchemy.orm import Session

from roomkey.models.ontology import Guest, Room, RoomStatus, RfidTag, RfidStatus, StayRecord
from roomkey.services.errors import ValidationError, NotFoundError, ConflictError
from roomkey.services.event_bus import event_bus, Event
from roomkey.services.room_service import RoomService, HELD_STATUSES, normalize_hours
from roomkey.services.rfid_service import RfidService
from roomkey.services.stay_record_service import StayRecordService
from roomkey.services.checkout_service import CheckOutService

logger = logging.getLogger(__name__)


def resolve_stay_hours(hours_stay=None, check_in: Optional[datetime] = None,
                       check_out: Optional[datetime] = None) -> Decimal:
    """住宿时长：直接给出，或由 check_out - check_in 计算（保留两位小数）"""
    if hours_stay is not None:
        return normalize_hours(hours_stay)

    if check_in is None or check_out is None:
        raise ValidationError("缺少必填字段: hours_stay 或 check_in/check_out")
    if check_out <= check_in:
        raise ValidationError("check_out 必须晚于 check_in")

    seconds = Decimal(str((check_out - check_in).total_seconds()))
    return normalize_hours(seconds / Decimal(3600))


@dataclass
class RegistrationResult:
    room: Room
    stay: StayRecord
    tag: RfidTag
    idempotent: bool = False


class RegistrationService:
    """前台登记服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock or datetime.now
        self.rooms = RoomService(db, self._publish_event, self._now)
        self.rfids = RfidService(db, self._publish_event, self._now)
        self.stays = StayRecordService(db, self._publish_event, self._now)
        self.checkout = CheckOutService(db, self._publish_event, self._now)

    def register(self, guest_id: int, room_number: str, credential_id: int,
                 hours_stay=None, check_in: Optional[datetime] = None,
                 check_out: Optional[datetime] = None) -> RegistrationResult:
        """
        登记入住
        1. 客人已有未结束记录 → 幂等返回已有三元组
        2. 解析时长
        3. 房间 available → reserved（同一客人已预留时继续上次未完成的登记）
        4. 解析凭证并分配给客人
        5. 新建入住记录（registered）
        """
        if not guest_id or not room_number or not credential_id:
            raise ValidationError("缺少必填字段: guest_id, room_number, credential_id")

        guest = self.db.query(Guest).filter(Guest.id == guest_id).first()
        if not guest:
            raise NotFoundError("客人不存在")

        existing = self._existing_triple(guest_id)
        if existing:
            return existing

        hours = resolve_stay_hours(hours_stay, check_in, check_out)

        room = self.rooms.get_room_by_number(room_number)
        if not room:
            raise NotFoundError(f"房间 {room_number} 不存在")
        if room.status == RoomStatus.RESERVED and room.guest_id == guest_id:
            logger.info(f"Resuming registration of guest {guest_id} on reserved room {room_number}")
        else:
            try:
                room = self.rooms.reserve(room_number, guest_id, hours, expected_check_in=check_in)
            except ConflictError:
                self.db.refresh(room)
                if not (room.status == RoomStatus.RESERVED and room.guest_id == guest_id):
                    raise
                logger.info(f"Room {room_number} reserved for guest {guest_id} by a concurrent request")

        tag = self._resolve_credential(credential_id)
        tag = self._assign_credential(tag, guest_id)

        stay, created = self.stays.open_record(
            guest, room.id,
            rfid_id=tag.id,
            hours_stay=hours,
            registered_at=room.registered_at,
        )
        if not created:
            # 并发登记已抢先插入
            logger.info(f"Registration of guest {guest_id} raced, returning stay {stay.id}")
            return RegistrationResult(room=room, stay=stay, tag=tag, idempotent=True)

        logger.info(
            f"Guest {guest_id} registered to room {room_number} with RFID {tag.rfid_uid} "
            f"(stay {stay.id}, {hours}h)"
        )
        return RegistrationResult(room=room, stay=stay, tag=tag)

    # ============== 内部方法 ==============

    def _existing_triple(self, guest_id: int) -> Optional[RegistrationResult]:
        stay = self.stays.find_open_for_guest(guest_id)
        while stay is not None:
            room = self.rooms.get_room(stay.room_id)
            if room.guest_id == guest_id and room.status in HELD_STATUSES:
                break
            # 上次退房联动中断：补完后按新登记处理
            logger.warning(
                f"Open stay {stay.id} of guest {guest_id} points at room {room.room_number} "
                f"({room.status.value}), finishing the interrupted check-out"
            )
            self.checkout.resume_stale(stay)
            stay = self.stays.find_open_for_guest(guest_id)
        if stay is None:
            return None

        tag = self.rfids.get_by_id(stay.rfid_id) if stay.rfid_id else None
        if tag is None:
            held = self.rfids.get_for_guest(guest_id)
            tag = held[0] if held else None
        if tag is None:
            raise ConflictError("客人已有未结束的入住记录，但没有关联的凭证")
        logger.info(f"Guest {guest_id} already has open stay {stay.id}, returning it")
        return RegistrationResult(room=room, stay=stay, tag=tag, idempotent=True)

    def _resolve_credential(self, credential_id: int) -> RfidTag:
        tag = self.rfids.get_by_id(credential_id)
        if tag is None:
            raise NotFoundError(f"凭证 {credential_id} 不存在")
        return tag

    def _assign_credential(self, tag: RfidTag, guest_id: int) -> RfidTag:
        if tag.status == RfidStatus.AVAILABLE:
            outcome = self.rfids.assign(tag.rfid_uid, guest_id)
            tag = outcome.tag
            if outcome.changed:
                return tag
        if tag.status in (RfidStatus.ASSIGNED, RfidStatus.ACTIVE) and tag.guest_id == guest_id:
            return tag
        raise ConflictError(f"凭证 {tag.rfid_uid} 当前状态为 {tag.status.value}，不可分配")
