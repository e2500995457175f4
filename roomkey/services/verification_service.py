"""
刷卡验证服务 - 每次读卡器刷卡调用一次

判定顺序：
1. 凭证不存在 → 404；状态不是 assigned / active → 拒绝
2. 凭证无持有人 → 拒绝；持有人不存在 → 404
3. 解析目标房间（未指定时取客人名下 reserved / occupied 的房间）
4. 房间已 available → 拒绝（已退房）
5. reserved → 升级为 occupied（首次刷卡入住）
6. occupied 且 now >= check_out → 拒绝（住宿已结束）
7. 凭证仍是 assigned → 激活
8. 确保 (guest, room) 恰有一条未结束入住记录

任何异常路径都不会放行：存储错误回滚后转为 DependencyError
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roomkey.config import settings
from roomkey.models.ontology import Guest, Room, RoomStatus, RfidTag, RfidStatus, StayRecord
from roomkey.models.events import EventType, AccessDecisionData
from roomkey.services.errors import (
    ValidationError, NotFoundError, AccessDeniedError, DenyReason, DependencyError
)
from roomkey.services.event_bus import event_bus, Event
from roomkey.services.room_service import RoomService
from roomkey.services.rfid_service import RfidService
from roomkey.services.stay_record_service import StayRecordService, snapshot_guest

logger = logging.getLogger(__name__)

_ENTRY_STATUSES = (RfidStatus.ASSIGNED, RfidStatus.ACTIVE)


@dataclass
class VerificationResult:
    tag: RfidTag
    guest: Dict[str, Any]
    room: Room
    stay: StayRecord
    promoted_room: bool = False
    activated_rfid: bool = False


class VerificationService:
    """刷卡验证服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock or datetime.now
        self.rooms = RoomService(db, self._publish_event, self._now)
        self.rfids = RfidService(db, self._publish_event, self._now)
        self.stays = StayRecordService(db, self._publish_event, self._now)

    def verify(self, rfid_uid: str, room_number: Optional[str] = None) -> VerificationResult:
        if not rfid_uid:
            raise ValidationError("rfid_uid 不能为空")

        try:
            result = self._verify(rfid_uid, room_number)
        except AccessDeniedError as e:
            logger.info(f"Access denied for RFID {rfid_uid}: {e.reason.value}")
            self._publish_decision(rfid_uid, e.context.get("room_number", room_number),
                                   e.context.get("guest_id"), False, e.reason.value)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Store error while verifying RFID {rfid_uid}: {e}", exc_info=True)
            raise DependencyError("存储不可用，拒绝开门") from e

        self._publish_decision(rfid_uid, result.room.room_number, result.room.guest_id, True,
                               "promoted" if result.promoted_room else "granted")
        return result

    # ============== 判定 ==============

    def _verify(self, rfid_uid: str, room_number: Optional[str]) -> VerificationResult:
        tag = self.rfids.get_by_uid(rfid_uid)
        if not tag:
            raise NotFoundError("RFID 不存在")

        context = {"rfid_uid": rfid_uid, "rfid_status": tag.status.value, "guest_id": tag.guest_id}
        if tag.status not in _ENTRY_STATUSES:
            raise AccessDeniedError(
                DenyReason.INVALID_CREDENTIAL_STATUS,
                f"RFID 当前状态为 {tag.status.value}，不可开门",
                context,
            )
        if tag.guest_id is None:
            raise AccessDeniedError(DenyReason.NO_HOLDER, "RFID 未分配给任何客人", context)

        guest = self.db.query(Guest).filter(Guest.id == tag.guest_id).first()
        if not guest:
            raise NotFoundError("客人不存在")

        room = self._resolve_room(guest, room_number, context)
        context["room_number"] = room.room_number
        context["room_status"] = room.status.value

        promoted = False
        if room.status == RoomStatus.RESERVED:
            outcome = self.rooms.promote_to_occupied(room.id)
            room = outcome.room
            promoted = outcome.changed
            if not promoted and not (room.status == RoomStatus.OCCUPIED and room.guest_id == guest.id):
                # 升级时房间被退房或转给他人
                raise AccessDeniedError(DenyReason.NO_RESERVATION, "房间已不在该客人名下", context)

        if room.status != RoomStatus.OCCUPIED:
            raise AccessDeniedError(DenyReason.ALREADY_CHECKED_OUT, "客人已退房", context)

        now = self._now()
        if room.check_out is None or now >= room.check_out:
            raise AccessDeniedError(DenyReason.STAY_ENDED, "住宿已结束", context)

        activated = False
        if tag.status == RfidStatus.ASSIGNED:
            outcome = self.rfids.activate(tag.rfid_uid)
            tag = outcome.tag
            activated = outcome.changed

        stay, _ = self.stays.ensure_open(guest, room.id, rfid_id=tag.id, hours_stay=room.hours_stay)
        if stay.check_in is None:
            stay = self.stays.stamp_check_in(
                stay.id, check_in=room.check_in, expected_check_out=room.check_out
            )

        if promoted:
            logger.info(f"RFID {rfid_uid} checked guest {guest.id} into room {room.room_number}")
        return VerificationResult(
            tag=tag,
            guest=snapshot_guest(guest),
            room=room,
            stay=stay,
            promoted_room=promoted,
            activated_rfid=activated,
        )

    def _resolve_room(self, guest: Guest, room_number: Optional[str], context: dict) -> Room:
        if room_number:
            room = self.rooms.get_room_by_number(room_number)
            context["room_number"] = room_number
            if room is not None and room.status == RoomStatus.AVAILABLE:
                raise AccessDeniedError(DenyReason.ALREADY_CHECKED_OUT, "客人已退房", context)
            if room is None or room.guest_id != guest.id:
                raise AccessDeniedError(
                    DenyReason.NO_RESERVATION,
                    f"客人未预留或未入住房间 {room_number}",
                    context,
                )
            return room

        held = self.rooms.get_rooms_held_by(guest.id)
        if not held:
            raise AccessDeniedError(DenyReason.NO_RESERVATION, "客人名下没有已预留或入住中的房间", context)
        if len(held) > 1:
            numbers = [r.room_number for r in held]
            if settings.AMBIGUOUS_ROOM_POLICY == "deny":
                context["candidates"] = numbers
                raise AccessDeniedError(DenyReason.AMBIGUOUS_ROOM, "客人名下有多个房间，请指定房间号", context)
            logger.warning(f"Guest {guest.id} holds rooms {numbers}, using {numbers[0]}")
        return held[0]

    def _publish_decision(self, rfid_uid: str, room_number: Optional[str], guest_id: Optional[int],
                          granted: bool, reason: str) -> None:
        self._publish_event(Event(
            event_type=EventType.ACCESS_GRANTED if granted else EventType.ACCESS_DENIED,
            timestamp=self._now(),
            data=AccessDecisionData(
                rfid_uid=rfid_uid,
                room_number=room_number,
                guest_id=guest_id,
                granted=granted,
                reason=reason,
            ).to_dict(),
            source="verification_service"
        ))
