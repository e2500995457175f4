"""
入住记录服务 - 入住台账
同一 (guest, room) 至多一条未结束记录：由部分唯一索引保证，插入冲突时返回已有记录
关闭只发生一次：UPDATE ... WHERE id = ? AND check_out IS NULL
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, Dict, Any
import logging

from sqlalchemy import update, cast, or_, String
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roomkey.models.ontology import (
    StayRecord, Guest, Room, RoomStatus, CheckOutReason, StayEventIndicator
)
from roomkey.models.events import EventType, StayOpenedData, StayClosedData
from roomkey.services.errors import ValidationError, NotFoundError
from roomkey.services.event_bus import event_bus, Event
from roomkey.services.room_service import normalize_hours

logger = logging.getLogger(__name__)

_SNAPSHOT_EXCLUDED = {"password"}


def snapshot_guest(guest: Guest) -> Dict[str, Any]:
    """客人资料快照（剔除密码等敏感字段）"""
    snapshot = {}
    for column in Guest.__table__.columns:
        if column.name in _SNAPSHOT_EXCLUDED:
            continue
        value = getattr(guest, column.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        snapshot[column.name] = value
    return snapshot


class StayRecordService:
    """入住记录服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock or datetime.now

    # ============== 查询 ==============

    def get(self, stay_id: int) -> Optional[StayRecord]:
        return self.db.query(StayRecord).filter(StayRecord.id == stay_id).first()

    def list_records(self, open_only: bool = False, limit: int = 100) -> List[StayRecord]:
        """最近的入住记录"""
        query = self.db.query(StayRecord)
        if open_only:
            query = query.filter(StayRecord.check_out.is_(None))
        return query.order_by(StayRecord.id.desc()).limit(limit).all()

    def search(self, keyword: str, limit: int = 100) -> List[StayRecord]:
        """按客人快照模糊搜索（姓名、邮箱、电话）"""
        if not keyword or not keyword.strip():
            raise ValidationError("搜索关键字不能为空")
        pattern = f"%{keyword.strip()}%"
        return self.db.query(StayRecord).filter(
            cast(StayRecord.guest_snapshot, String).ilike(pattern)
        ).order_by(StayRecord.id.desc()).limit(limit).all()

    def find_open_for_guest(self, guest_id: int) -> Optional[StayRecord]:
        """客人最早的一条未结束记录"""
        return self.db.query(StayRecord).filter(
            StayRecord.guest_id == guest_id,
            StayRecord.check_out.is_(None)
        ).order_by(StayRecord.id).first()

    def find_open(self, guest_id: int, room_id: int) -> Optional[StayRecord]:
        return self.db.query(StayRecord).filter(
            StayRecord.guest_id == guest_id,
            StayRecord.room_id == room_id,
            StayRecord.check_out.is_(None)
        ).first()

    def find_stale(self, room_id: Optional[int] = None) -> List[StayRecord]:
        """
        中断的退房留下的未结束记录：房间已释放，或已不在该客人名下
        """
        query = self.db.query(StayRecord).join(Room, Room.id == StayRecord.room_id).filter(
            StayRecord.check_out.is_(None),
            or_(
                Room.status == RoomStatus.AVAILABLE,
                Room.guest_id.is_(None),
                Room.guest_id != StayRecord.guest_id,
            )
        )
        if room_id is not None:
            query = query.filter(StayRecord.room_id == room_id)
        return query.order_by(StayRecord.id).all()

    # ============== 写入 ==============

    def open_record(self, guest: Guest, room_id: int, rfid_id: Optional[int] = None,
                    hours_stay: Optional[Decimal] = None,
                    registered_at: Optional[datetime] = None,
                    indicator: StayEventIndicator = StayEventIndicator.REGISTERED
                    ) -> Tuple[StayRecord, bool]:
        """
        新建未结束的入住记录

        Returns:
            (记录, 是否新建)；(guest, room) 已有未结束记录时返回已有记录
        """
        existing = self.find_open(guest.id, room_id)
        if existing:
            return existing, False

        record = StayRecord(
            room_id=room_id,
            guest_id=guest.id,
            rfid_id=rfid_id,
            registered_at=registered_at or self._now(),
            hours_stay=hours_stay,
            guest_snapshot=snapshot_guest(guest),
            event_indicator=indicator,
            was_early_checkout=False,
        )
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # 并发请求已插入同一 (guest, room) 的未结束记录
            self.db.rollback()
            existing = self.find_open(guest.id, room_id)
            if existing is None:
                raise
            logger.info(f"Open stay for guest {guest.id} room {room_id} created concurrently, reusing")
            return existing, False

        self.db.refresh(record)
        logger.info(f"Stay record {record.id} opened for guest {guest.id} room {room_id}")
        self._publish_event(Event(
            event_type=EventType.STAY_OPENED,
            timestamp=self._now(),
            data=StayOpenedData(
                stay_record_id=record.id,
                room_id=room_id,
                guest_id=guest.id,
                rfid_id=rfid_id,
                event_indicator=indicator.value,
            ).to_dict(),
            source="stay_record_service"
        ))
        return record, True

    def ensure_open(self, guest: Guest, room_id: int, rfid_id: Optional[int] = None,
                    hours_stay: Optional[Decimal] = None) -> Tuple[StayRecord, bool]:
        """刷卡时确保存在一条未结束记录，缺失则补建（checked_in）"""
        return self.open_record(
            guest, room_id,
            rfid_id=rfid_id,
            hours_stay=hours_stay,
            indicator=StayEventIndicator.CHECKED_IN,
        )

    def stamp_check_in(self, stay_id: int, check_in: Optional[datetime] = None,
                       hours_stay=None, overwrite: bool = False,
                       expected_check_out: Optional[datetime] = None) -> StayRecord:
        """
        写入入住时间与预计离店时间
        默认只写第一次（check_in 为空时）；overwrite=True 为管理员修正
        """
        record = self.get(stay_id)
        if not record:
            raise NotFoundError("入住记录不存在")
        if not record.is_open:
            raise ValidationError("入住记录已关闭")

        hours = record.hours_stay
        if hours_stay is not None:
            hours = normalize_hours(hours_stay)

        check_in = check_in or self._now()
        values = {"check_in": check_in, "updated_at": self._now()}
        if hours is not None:
            values["hours_stay"] = hours
            values["expected_check_out"] = check_in + timedelta(hours=float(hours))
        if expected_check_out is not None:
            values["expected_check_out"] = expected_check_out

        conditions = [StayRecord.id == stay_id, StayRecord.check_out.is_(None)]
        if overwrite:
            if record.check_in is not None:
                logger.warning(f"Overwriting check-in of stay record {stay_id}")
        else:
            conditions.append(StayRecord.check_in.is_(None))

        result = self.db.execute(
            update(StayRecord)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(record)
        if result.rowcount == 0:
            logger.info(f"Stay record {stay_id} check-in already stamped")
        return record

    def close(self, stay_id: int, reason: Optional[str] = None,
              closed_at: Optional[datetime] = None) -> Tuple[StayRecord, bool]:
        """
        关闭入住记录（只成功一次）
        was_early = 实际离店 < 预计离店；未给原因时按是否提前取 Early / Auto
        """
        record = self.get(stay_id)
        if not record:
            raise NotFoundError("入住记录不存在")
        if not record.is_open:
            return record, False

        closed_at = closed_at or self._now()
        expected = record.expected_check_out
        was_early = expected is not None and closed_at < expected
        if not reason:
            reason = (CheckOutReason.EARLY if was_early else CheckOutReason.AUTO).value

        result = self.db.execute(
            update(StayRecord)
            .where(StayRecord.id == stay_id, StayRecord.check_out.is_(None))
            .values(
                check_out=closed_at,
                check_out_reason=reason,
                was_early_checkout=was_early,
                updated_at=self._now(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(record)
        if result.rowcount == 0:
            logger.info(f"Stay record {stay_id} was closed concurrently")
            return record, False

        logger.info(f"Stay record {stay_id} closed ({reason}, early={was_early})")
        self._publish_event(Event(
            event_type=EventType.STAY_CLOSED,
            timestamp=self._now(),
            data=StayClosedData(
                stay_record_id=record.id,
                room_id=record.room_id,
                guest_id=record.guest_id,
                reason=reason,
                was_early=was_early,
                check_out_time=closed_at,
            ).to_dict(),
            source="stay_record_service"
        ))
        return record, True

    def close_open_for(self, guest_id: int, room_id: int, reason: Optional[str] = None,
                       closed_at: Optional[datetime] = None) -> Optional[StayRecord]:
        """关闭 (guest, room) 的未结束记录，没有则返回 None"""
        record = self.find_open(guest_id, room_id)
        if record is None:
            return None
        closed, _ = self.close(record.id, reason=reason, closed_at=closed_at)
        return closed
