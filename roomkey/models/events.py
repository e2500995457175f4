"""
领域事件定义 (Domain Events)
房间 / 凭证 / 入住记录状态变化时发布，通知与外部网关同步都挂在这些事件上
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any


class EventType(str, Enum):
    """事件类型枚举"""
    # 房间相关
    ROOM_RESERVED = "room.reserved"
    ROOM_OCCUPIED = "room.occupied"
    ROOM_CHECKED_OUT = "room.checked_out"
    ROOM_NO_SHOW = "room.no_show"

    # 凭证相关
    CREDENTIAL_ASSIGNED = "credential.assigned"
    CREDENTIAL_ACTIVATED = "credential.activated"
    CREDENTIAL_LOST = "credential.lost"
    CREDENTIAL_RELEASED = "credential.released"

    # 入住记录相关
    STAY_OPENED = "stay.opened"
    STAY_CLOSED = "stay.closed"
    STAY_CHECKOUT_WARNING = "stay.checkout_warning"

    # 门禁相关
    ACCESS_GRANTED = "access.granted"
    ACCESS_DENIED = "access.denied"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = asdict(self)
        # 处理 datetime 序列化
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class RoomStatusChangedData(BaseEventData):
    """房间状态变更事件数据"""
    room_id: int = 0
    room_number: str = ""
    old_status: str = ""
    new_status: str = ""
    guest_id: Optional[int] = None
    reason: str = ""


@dataclass
class RoomCheckedOutData(BaseEventData):
    """退房事件数据（guest_id 供网关同步使用）"""
    room_id: int = 0
    room_number: str = ""
    guest_id: Optional[int] = None
    reason: str = ""
    stay_record_id: Optional[int] = None
    was_early: bool = False
    released_rfids: int = 0
    check_out_time: Optional[datetime] = None


@dataclass
class CredentialChangedData(BaseEventData):
    """凭证状态变更事件数据"""
    rfid_id: int = 0
    rfid_uid: str = ""
    guest_id: Optional[int] = None
    old_status: str = ""
    new_status: str = ""


@dataclass
class StayOpenedData(BaseEventData):
    """入住记录创建事件数据"""
    stay_record_id: int = 0
    room_id: int = 0
    guest_id: int = 0
    rfid_id: Optional[int] = None
    event_indicator: str = ""


@dataclass
class StayClosedData(BaseEventData):
    """入住记录关闭事件数据"""
    stay_record_id: int = 0
    room_id: int = 0
    guest_id: int = 0
    reason: str = ""
    was_early: bool = False
    check_out_time: Optional[datetime] = None


@dataclass
class CheckoutWarningData(BaseEventData):
    """到期提醒事件数据"""
    room_id: int = 0
    room_number: str = ""
    guest_id: Optional[int] = None
    check_out: Optional[datetime] = None
    minutes_left: int = 0


@dataclass
class AccessDecisionData(BaseEventData):
    """刷卡结果事件数据"""
    rfid_uid: str = ""
    room_number: Optional[str] = None
    guest_id: Optional[int] = None
    granted: bool = False
    reason: str = ""
