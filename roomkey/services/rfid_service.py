"""
RFID 凭证服务 - 凭证登记台账
每次迁移都以前置状态为条件；未命中任何行时返回 changed=False，
由调用方解释为"已处于目标状态"或"不具备迁移条件"，不得静默当作成功
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from roomkey.models.ontology import RfidTag, RfidStatus
from roomkey.models.transitions import RFID_TRANSITIONS
from roomkey.models.events import EventType, CredentialChangedData
from roomkey.services.errors import ValidationError, NotFoundError, ConflictError
from roomkey.services.event_bus import event_bus, Event

logger = logging.getLogger(__name__)

_TRIGGER_EVENTS = {
    "assign": EventType.CREDENTIAL_ASSIGNED,
    "activate": EventType.CREDENTIAL_ACTIVATED,
    "mark_lost": EventType.CREDENTIAL_LOST,
    "unassign": EventType.CREDENTIAL_RELEASED,
    "release": EventType.CREDENTIAL_RELEASED,
    "restore": EventType.CREDENTIAL_ASSIGNED,
}


@dataclass
class TransitionOutcome:
    """单次条件迁移的结果"""
    tag: RfidTag
    changed: bool
    previous_status: Optional[RfidStatus] = None


class RfidService:
    """RFID 凭证服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None,
                 clock: Callable[[], datetime] = None):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self._now = clock or datetime.now

    # ============== 查询 ==============

    def get_all(self) -> List[RfidTag]:
        return self.db.query(RfidTag).order_by(RfidTag.id).all()

    def get_available(self) -> List[RfidTag]:
        return self.db.query(RfidTag).filter(
            RfidTag.status == RfidStatus.AVAILABLE
        ).order_by(RfidTag.id).all()

    def get_by_uid(self, rfid_uid: str) -> Optional[RfidTag]:
        return self.db.query(RfidTag).filter(RfidTag.rfid_uid == rfid_uid).first()

    def get_by_id(self, rfid_id: int) -> Optional[RfidTag]:
        return self.db.query(RfidTag).filter(RfidTag.id == rfid_id).first()

    def get_for_guest(self, guest_id: int) -> List[RfidTag]:
        return self.db.query(RfidTag).filter(RfidTag.guest_id == guest_id).order_by(RfidTag.id).all()

    def create_tag(self, rfid_uid: str) -> RfidTag:
        """登记新凭证（available）"""
        if self.get_by_uid(rfid_uid):
            raise ConflictError(f"RFID {rfid_uid} 已存在")
        tag = RfidTag(rfid_uid=rfid_uid, status=RfidStatus.AVAILABLE)
        self.db.add(tag)
        self.db.commit()
        self.db.refresh(tag)
        return tag

    # ============== 状态迁移 ==============

    def assign(self, rfid_uid: str, guest_id: int) -> TransitionOutcome:
        """available → assigned，客人成为持有人"""
        if not guest_id:
            raise ValidationError("guest_id 不能为空")
        return self._fire(rfid_uid, "assign", guest_id=guest_id)

    def activate(self, rfid_uid: str) -> TransitionOutcome:
        """assigned → active"""
        return self._fire(rfid_uid, "activate")

    def mark_lost(self, rfid_uid: str) -> TransitionOutcome:
        """任意非 lost 状态 → lost（保留持有人）"""
        return self._fire(rfid_uid, "mark_lost")

    def unassign(self, rfid_uid: str) -> TransitionOutcome:
        """任意状态 → available，清空持有人"""
        return self._fire(rfid_uid, "unassign", guest_id=None)

    def restore(self, rfid_uid: str) -> TransitionOutcome:
        """挂失找回：lost → assigned，要求仍有持有人"""
        return self._fire(rfid_uid, "restore", extra_where=(RfidTag.guest_id.isnot(None),))

    def release_for_guest(self, guest_id: int) -> List[RfidTag]:
        """
        退房联动：释放客人名下 assigned / active 的凭证
        挂失的凭证保持 lost，直到管理员显式重置
        """
        candidates = self.db.query(RfidTag).filter(
            RfidTag.guest_id == guest_id,
            RfidTag.status.in_([RfidStatus(s) for s in RFID_TRANSITIONS.sources("release")])
        ).all()

        released = []
        for tag in candidates:
            outcome = self._fire(
                tag.rfid_uid, "release",
                guest_id=None,
                extra_where=(RfidTag.guest_id == guest_id,),
            )
            if outcome.changed:
                released.append(outcome.tag)
        if released:
            logger.info(f"Released {len(released)} RFID tag(s) for guest {guest_id}")
        return released

    def update_status(self, rfid_uid: str, status: str) -> TransitionOutcome:
        """
        管理员直接指定状态
        已处于该状态时不做变更；其余按转换表分派到对应动作
        """
        if not rfid_uid or not status:
            raise ValidationError("rfid_uid 和 status 不能为空")
        tag = self._require(rfid_uid)

        try:
            target = RfidStatus(status.lower())
        except ValueError:
            raise ValidationError(f"不支持的状态: {status}")

        if tag.status == target:
            return TransitionOutcome(tag=tag, changed=False, previous_status=tag.status)

        trigger = {
            RfidStatus.AVAILABLE: "unassign",
            RfidStatus.ASSIGNED: "restore",
            RfidStatus.ACTIVE: "activate",
            RfidStatus.LOST: "mark_lost",
        }[target]
        if not RFID_TRANSITIONS.can_fire(tag.status, trigger):
            logger.info(f"RFID {rfid_uid} cannot move {tag.status.value} -> {target.value}")
            return TransitionOutcome(tag=tag, changed=False, previous_status=tag.status)
        values = {"guest_id": None} if trigger == "unassign" else {}
        extra_where = (RfidTag.guest_id.isnot(None),) if trigger == "restore" else ()
        return self._fire(rfid_uid, trigger, extra_where=extra_where, **values)

    # ============== 内部方法 ==============

    def _require(self, rfid_uid: str) -> RfidTag:
        if not rfid_uid:
            raise ValidationError("rfid_uid 不能为空")
        tag = self.get_by_uid(rfid_uid)
        if not tag:
            raise NotFoundError(f"RFID {rfid_uid} 不存在")
        return tag

    def _fire(self, rfid_uid: str, trigger: str, extra_where: tuple = (), **values) -> TransitionOutcome:
        """按转换表执行条件更新"""
        tag = self._require(rfid_uid)
        previous_status = tag.status
        previous_guest_id = tag.guest_id

        sources = [RfidStatus(s) for s in RFID_TRANSITIONS.sources(trigger)]
        target = RfidStatus(RFID_TRANSITIONS.target(trigger))
        result = self.db.execute(
            update(RfidTag)
            .where(RfidTag.rfid_uid == rfid_uid, RfidTag.status.in_(sources), *extra_where)
            .values(status=target, updated_at=self._now(), **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(tag)

        if result.rowcount == 0:
            logger.info(
                f"RFID {rfid_uid} '{trigger}' not applied (status {tag.status.value})"
            )
            return TransitionOutcome(tag=tag, changed=False, previous_status=tag.status)

        logger.info(f"RFID {rfid_uid}: {previous_status.value} -> {tag.status.value} ({trigger})")
        self._publish_event(Event(
            event_type=_TRIGGER_EVENTS[trigger],
            timestamp=self._now(),
            data=CredentialChangedData(
                rfid_id=tag.id,
                rfid_uid=tag.rfid_uid,
                guest_id=tag.guest_id if tag.guest_id is not None else previous_guest_id,
                old_status=previous_status.value,
                new_status=tag.status.value,
            ).to_dict(),
            source="rfid_service"
        ))
        return TransitionOutcome(tag=tag, changed=True, previous_status=previous_status)
