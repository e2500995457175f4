"""
房间服务 - 房间台账
房间状态只通过条件更新迁移：UPDATE rooms ... WHERE id = ? AND status IN (<源状态>)
受影响行数为 0 视为"已被其他请求迁移"，由调用方决定如何处理
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from roomkey.config import settings
from roomkey.models.ontology import Room, RoomStatus
from roomkey.models.schemas import RoomCreate
from roomkey.models.transitions import ROOM_TRANSITIONS
from roomkey.models.events import EventType, RoomStatusChangedData
from roomkey.services.errors import ValidationError, NotFoundError, ConflictError
from roomkey.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)

HELD_STATUSES = (RoomStatus.RESERVED, RoomStatus.OCCUPIED)

# rooms.hours_stay / stay_records.hours_stay 为 Numeric(6, 2)
HOURS_QUANTUM = Decimal("0.01")
MAX_STAY_HOURS = Decimal("9999.99")


def parse_hours(raw) -> Optional[Decimal]:
    """解析住宿时长，非正数或无法解析时返回 None"""
    if raw is None:
        return None
    try:
        hours = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not hours.is_finite() or hours <= 0:
        return None
    return hours


def normalize_hours(raw) -> Decimal:
    """住宿时长保留两位小数，须落在 (0, MAX_STAY_HOURS] 内"""
    hours = parse_hours(raw)
    if hours is None:
        raise ValidationError("hours_stay 必须为正数")
    hours = hours.quantize(HOURS_QUANTUM, rounding=ROUND_HALF_UP)
    if hours <= 0:
        raise ValidationError("hours_stay 至少为 0.01 小时")
    if hours > MAX_STAY_HOURS:
        raise ValidationError(f"hours_stay 不能超过 {MAX_STAY_HOURS} 小时")
    return hours


@dataclass
class RoomReleaseResult:
    """退房 / 爽约释放的结果（释放前的占用信息供后续联动使用）"""
    room: Room
    changed: bool
    previous_status: Optional[RoomStatus] = None
    previous_guest_id: Optional[int] = None
    previous_check_out: Optional[datetime] = None


class RoomService:
    """房间服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        # 支持依赖注入事件发布器与时钟，便于测试
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock or datetime.now

    # ============== 查询 ==============

    def get_rooms(self, status: Optional[RoomStatus] = None) -> List[Room]:
        """获取房间列表"""
        query = self.db.query(Room)
        if status is not None:
            query = query.filter(Room.status == status)
        return query.order_by(Room.room_number).all()

    def get_room(self, room_id: int) -> Optional[Room]:
        """获取单个房间"""
        return self.db.query(Room).filter(Room.id == room_id).first()

    def get_room_by_number(self, room_number: str) -> Optional[Room]:
        """根据房间号获取房间"""
        return self.db.query(Room).filter(Room.room_number == str(room_number)).first()

    def get_rooms_held_by(self, guest_id: int) -> List[Room]:
        """客人名下 reserved / occupied 的房间，按房间号排序"""
        return self.db.query(Room).filter(
            Room.guest_id == guest_id,
            Room.status.in_(HELD_STATUSES)
        ).order_by(Room.room_number).all()

    def create_room(self, data: RoomCreate) -> Room:
        """创建房间（初始为 available）"""
        if not data.room_number:
            raise ValidationError("房间号不能为空")
        if self.get_room_by_number(data.room_number):
            raise ConflictError(f"房间号 '{data.room_number}' 已存在")

        room = Room(room_number=data.room_number, floor=data.floor, status=RoomStatus.AVAILABLE)
        self.db.add(room)
        self.db.commit()
        self.db.refresh(room)
        return room

    # ============== 状态迁移 ==============

    def reserve(self, room_number: str, guest_id: int, hours_stay,
                expected_check_in: Optional[datetime] = None) -> Room:
        """
        登记房间：available → reserved
        写入 guest_id、hours_stay、registered_at
        """
        if not room_number or not guest_id:
            raise ValidationError("缺少必填字段: room_number, guest_id, hours_stay")
        hours = normalize_hours(hours_stay)

        room = self.get_room_by_number(room_number)
        if not room:
            raise NotFoundError(f"房间 {room_number} 不存在")
        if room.status != RoomStatus.AVAILABLE:
            raise ConflictError(f"房间 {room_number} 当前状态为 {room.status.value}，不可登记")

        now = self._now()
        rowcount = self._transition(
            room.id, "reserve",
            guest_id=guest_id,
            hours_stay=hours,
            registered_at=now,
            expected_check_in=expected_check_in or now,
            check_in=None,
            check_out=None,
            warning_sent=False,
        )
        self.db.refresh(room)
        if rowcount == 0:
            logger.warning(f"Room {room_number} was taken concurrently (now {room.status.value})")
            raise ConflictError(f"房间 {room_number} 当前状态为 {room.status.value}，不可登记")

        logger.info(f"Room {room_number} reserved for guest {guest_id} ({hours}h)")
        self._publish_status_change(room, RoomStatus.AVAILABLE, "reserve")
        return room

    def promote_to_occupied(self, room_id: int) -> RoomReleaseResult:
        """
        首次刷卡入住：reserved → occupied
        check_in = now，check_out = now + hours_stay（时长无效时按默认时长）
        """
        room = self.get_room(room_id)
        if not room:
            raise NotFoundError("房间不存在")

        hours = parse_hours(room.hours_stay)
        if hours is None:
            logger.warning(
                f"Invalid hours_stay ({room.hours_stay}) on room {room.room_number}. "
                f"Defaulting to {settings.DEFAULT_STAY_HOURS} hour(s)."
            )
            hours = Decimal(str(settings.DEFAULT_STAY_HOURS))

        check_in = self._now()
        check_out = check_in + timedelta(hours=float(hours))
        rowcount = self._transition(
            room.id, "occupy",
            check_in=check_in,
            check_out=check_out,
            warning_sent=False,
            extra_where=(Room.guest_id == room.guest_id,),
        )
        self.db.refresh(room)
        if rowcount == 0:
            logger.info(f"Room {room.room_number} promotion skipped, already {room.status.value}")
            return RoomReleaseResult(room=room, changed=False)

        logger.info(f"Room {room.room_number} occupied until {check_out.isoformat()}")
        self._publish_status_change(room, RoomStatus.RESERVED, "occupy")
        return RoomReleaseResult(room=room, changed=True, previous_status=RoomStatus.RESERVED)

    def release(self, room_id: int, trigger: str = "check_out") -> RoomReleaseResult:
        """
        清空房间占用：reserved/occupied → available（trigger=check_out）
        或 reserved → available（trigger=no_show）
        已经是 available 时幂等返回 changed=False
        """
        room = self.get_room(room_id)
        if not room:
            raise NotFoundError("房间不存在")
        if room.status == RoomStatus.AVAILABLE:
            return RoomReleaseResult(room=room, changed=False)

        previous_status = room.status
        previous_guest_id = room.guest_id
        previous_check_out = room.check_out

        extra_where = [Room.guest_id == previous_guest_id] if previous_guest_id is not None \
            else [Room.guest_id.is_(None)]
        if trigger == "no_show":
            extra_where.append(Room.check_in.is_(None))

        rowcount = self._transition(
            room.id, trigger,
            guest_id=None,
            hours_stay=None,
            registered_at=None,
            expected_check_in=None,
            check_in=None,
            check_out=None,
            warning_sent=False,
            extra_where=tuple(extra_where),
        )
        self.db.refresh(room)
        if rowcount == 0:
            logger.info(f"Room {room.room_number} release ({trigger}) skipped, now {room.status.value}")
            return RoomReleaseResult(room=room, changed=False)

        logger.info(f"Room {room.room_number} released ({trigger}), previous guest {previous_guest_id}")
        return RoomReleaseResult(
            room=room,
            changed=True,
            previous_status=previous_status,
            previous_guest_id=previous_guest_id,
            previous_check_out=previous_check_out,
        )

    def mark_warning_sent(self, room_id: int) -> bool:
        """到期提醒标记，每次入住只成功一次"""
        result = self.db.execute(
            update(Room)
            .where(
                Room.id == room_id,
                Room.status == RoomStatus.OCCUPIED,
                Room.warning_sent.is_(False),
            )
            .values(warning_sent=True, updated_at=self._now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    # ============== 内部方法 ==============

    def _transition(self, room_id: int, trigger: str, extra_where: tuple = (), **values) -> int:
        """按转换表执行条件更新，返回受影响行数"""
        sources = [RoomStatus(s) for s in ROOM_TRANSITIONS.sources(trigger)]
        target = RoomStatus(ROOM_TRANSITIONS.target(trigger))
        result = self.db.execute(
            update(Room)
            .where(Room.id == room_id, Room.status.in_(sources), *extra_where)
            .values(status=target, updated_at=self._now(), **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    def _publish_status_change(self, room: Room, old_status: RoomStatus, trigger: str) -> None:
        # 退房 / 爽约事件由 CheckOutService 在联动完成后发布
        event_type = EventType.ROOM_RESERVED if trigger == "reserve" else EventType.ROOM_OCCUPIED
        self._publish_event(Event(
            event_type=event_type,
            timestamp=self._now(),
            data=RoomStatusChangedData(
                room_id=room.id,
                room_number=room.room_number,
                old_status=old_status.value,
                new_status=room.status.value,
                guest_id=room.guest_id,
                reason=trigger,
            ).to_dict(),
            source="room_service"
        ))
