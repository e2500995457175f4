"""
本体对象定义 (Ontology Objects)
门禁核心的三个台账：Room（房间）、RfidTag（凭证）、StayRecord（入住记录）
Guest / Admin 由外部账号服务维护，核心只读
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text,
    Enum as SQLEnum, Boolean, Numeric, JSON, Index, text
)
from sqlalchemy.orm import relationship
from roomkey.database import Base


def _enum_values(enum_cls):
    """枚举以 value 持久化（available / reserved ...）"""
    return [member.value for member in enum_cls]


# ============== 枚举定义 ==============

class RoomStatus(str, Enum):
    """房间状态枚举"""
    AVAILABLE = "available"    # 空闲
    RESERVED = "reserved"      # 已登记，未刷卡
    OCCUPIED = "occupied"      # 入住中


class RfidStatus(str, Enum):
    """RFID 凭证状态枚举"""
    AVAILABLE = "available"    # 可分配
    ASSIGNED = "assigned"      # 已分配，未使用
    ACTIVE = "active"          # 已激活（首次刷卡后）
    LOST = "lost"              # 挂失


class StayEventIndicator(str, Enum):
    """入住记录来源"""
    REGISTERED = "registered"  # 前台登记流程创建
    CHECKED_IN = "checked_in"  # 刷卡时补建


class CheckOutReason(str, Enum):
    """退房原因"""
    AUTO = "Auto Check-Out"
    EARLY = "Early Check-Out"
    STANDARD = "Check-Out"
    NO_SHOW = "No-Show"


class NotificationType(str, Enum):
    """通知类型"""
    ROOM_STATUS = "room_status"
    CHECKOUT_REMINDER = "checkout_reminder"


# ============== 外部协作方（只读） ==============

class Guest(Base):
    """
    客人对象
    password 仅由外部账号服务写入，快照时剔除
    """
    __tablename__ = "guests"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True)
    phone = Column(String(20))
    password = Column(String(255))
    membership_level = Column(String(20), default="normal")
    avatar_url = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow)

    # 链接
    rooms = relationship("Room", back_populates="guest")
    rfid_tags = relationship("RfidTag", back_populates="guest")
    stay_records = relationship("StayRecord", back_populates="guest")


class Admin(Base):
    """管理员对象 - 接收管理类通知，JWT 的 sub"""
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ============== 核心台账 ==============

class Room(Base):
    """
    房间台账
    不变式：guest_id 非空 ⇔ status ≠ available；
           check_in / check_out 仅在 occupied 时非空
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(20), unique=True, nullable=False)
    floor = Column(Integer)
    status = Column(
        SQLEnum(RoomStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=RoomStatus.AVAILABLE, nullable=False
    )
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=True)
    hours_stay = Column(Numeric(6, 2))                   # 住宿时长（小时）
    registered_at = Column(DateTime)                     # 登记时间
    expected_check_in = Column(DateTime)                 # 预计到店时间（爽约判定）
    check_in = Column(DateTime)                          # 首次刷卡时间
    check_out = Column(DateTime)                         # 到期时间
    warning_sent = Column(Boolean, default=False, nullable=False)  # 到期提醒已发送
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    guest = relationship("Guest", back_populates="rooms")
    stay_records = relationship("StayRecord", back_populates="room")


class RfidTag(Base):
    """
    RFID 凭证登记
    不变式：status = available ⇒ guest_id 为空
    """
    __tablename__ = "rfid_tags"

    id = Column(Integer, primary_key=True, index=True)
    rfid_uid = Column(String(64), unique=True, nullable=False, index=True)
    status = Column(
        SQLEnum(RfidStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=RfidStatus.AVAILABLE, nullable=False
    )
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    guest = relationship("Guest", back_populates="rfid_tags")


class StayRecord(Base):
    """
    入住记录台账（room occupancy history）
    check_out 为空即"未结束"；同一 (guest, room) 至多一条未结束记录，由部分唯一索引保证
    关闭后不再修改
    """
    __tablename__ = "stay_records"
    __table_args__ = (
        Index(
            "uq_stay_records_open_guest_room",
            "guest_id", "room_id",
            unique=True,
            sqlite_where=text("check_out IS NULL"),
            postgresql_where=text("check_out IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False)
    guest_id = Column(Integer, ForeignKey("guests.id"), nullable=False)
    rfid_id = Column(Integer, ForeignKey("rfid_tags.id"), nullable=True)
    registered_at = Column(DateTime)
    check_in = Column(DateTime)
    expected_check_out = Column(DateTime)                # 首次刷卡时计算
    check_out = Column(DateTime)
    hours_stay = Column(Numeric(6, 2))
    check_out_reason = Column(String(50))
    was_early_checkout = Column(Boolean, default=False, nullable=False)
    guest_snapshot = Column(JSON, default=dict)          # 客人资料快照（不含密码）
    event_indicator = Column(
        SQLEnum(StayEventIndicator, values_callable=_enum_values, native_enum=False, length=20),
        default=StayEventIndicator.REGISTERED, nullable=False
    )
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 链接
    room = relationship("Room", back_populates="stay_records")
    guest = relationship("Guest", back_populates="stay_records")
    rfid_tag = relationship("RfidTag")

    @property
    def is_open(self) -> bool:
        return self.check_out is None


class Notification(Base):
    """站内通知（推送投递由外部服务完成）"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    recipient_guest_id = Column(Integer, ForeignKey("guests.id"), nullable=True)
    recipient_admin_id = Column(Integer, ForeignKey("admins.id"), nullable=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(50))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
