"""
Pydantic 模式定义
用于 API 请求/响应验证
必填字段的缺失由服务层判定（返回 400），这里大多声明为 Optional
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator, ConfigDict
from roomkey.models.ontology import RoomStatus, RfidStatus, StayEventIndicator


def _room_number_to_str(value):
    if value is None:
        return value
    return str(value).strip()


# ============== 房间 Schemas ==============

class RoomCreate(BaseModel):
    room_number: str
    floor: Optional[int] = None

    @field_validator("room_number", mode="before")
    @classmethod
    def normalize_room_number(cls, value):
        return _room_number_to_str(value)


class RoomAssign(BaseModel):
    room_number: Optional[str] = None
    guest_id: Optional[int] = None
    hours_stay: Optional[Decimal] = None

    @field_validator("room_number", mode="before")
    @classmethod
    def normalize_room_number(cls, value):
        return _room_number_to_str(value)


class RoomCheckOutRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=50)


class RoomResponse(BaseModel):
    id: int
    room_number: str
    floor: Optional[int] = None
    status: RoomStatus
    guest_id: Optional[int] = None
    hours_stay: Optional[Decimal] = None
    registered_at: Optional[datetime] = None
    expected_check_in: Optional[datetime] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    warning_sent: bool = False
    model_config = ConfigDict(from_attributes=True)


# ============== RFID Schemas ==============

class RfidTagCreate(BaseModel):
    rfid_uid: str = Field(..., min_length=1, max_length=64)


class RfidUidRequest(BaseModel):
    rfid_uid: Optional[str] = None


class RfidAssignRequest(BaseModel):
    rfid_uid: Optional[str] = None
    guest_id: Optional[int] = None


class RfidStatusUpdate(BaseModel):
    rfid_uid: Optional[str] = None
    status: Optional[str] = None


class RfidTagResponse(BaseModel):
    id: int
    rfid_uid: str
    status: RfidStatus
    guest_id: Optional[int] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ============== 入住记录 Schemas ==============

class StayRecordResponse(BaseModel):
    id: int
    room_id: int
    guest_id: int
    rfid_id: Optional[int] = None
    registered_at: Optional[datetime] = None
    check_in: Optional[datetime] = None
    expected_check_out: Optional[datetime] = None
    check_out: Optional[datetime] = None
    hours_stay: Optional[Decimal] = None
    check_out_reason: Optional[str] = None
    was_early_checkout: bool = False
    guest_snapshot: Dict[str, Any] = Field(default_factory=dict)
    event_indicator: StayEventIndicator
    model_config = ConfigDict(from_attributes=True)


class StayCheckInRequest(BaseModel):
    check_in: Optional[datetime] = None
    hours_stay: Optional[Decimal] = None


class StayCheckOutRequest(BaseModel):
    check_out: Optional[datetime] = None
    check_out_reason: Optional[str] = Field(None, max_length=50)


# ============== 登记 / 刷卡 Schemas ==============

class RegistrationRequest(BaseModel):
    """前台登记：hours_stay 与 check_in/check_out 二选一"""
    guest_id: Optional[int] = None
    room_number: Optional[str] = None
    hours_stay: Optional[Decimal] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    credential_id: Optional[int] = None

    @field_validator("room_number", mode="before")
    @classmethod
    def normalize_room_number(cls, value):
        return _room_number_to_str(value)


class RegistrationResponse(BaseModel):
    message: str
    room_id: int
    stay_id: int
    credential: RfidTagResponse
    idempotent: bool = False


class VerifyRequest(BaseModel):
    rfid_uid: Optional[str] = None
    room_number: Optional[str] = None

    @field_validator("room_number", mode="before")
    @classmethod
    def normalize_room_number(cls, value):
        return _room_number_to_str(value)


class VerifyResponse(BaseModel):
    message: str
    rfid: RfidTagResponse
    guest: Dict[str, Any]
    room: RoomResponse
    stay_id: int
    promoted_room: bool = False
    activated_rfid: bool = False


class SchedulerRunResponse(BaseModel):
    job: str
    affected: List[str] = Field(default_factory=list)
