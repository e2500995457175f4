"""
房间管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from roomkey.database import get_db
from roomkey.models.ontology import Admin, RoomStatus
from roomkey.models.schemas import RoomCreate, RoomAssign, RoomCheckOutRequest, RoomResponse
from roomkey.services.errors import StayError
from roomkey.services.room_service import RoomService
from roomkey.services.checkout_service import CheckOutService
from roomkey.security.auth import get_current_admin
from roomkey.routers.common import to_http_exception

router = APIRouter(prefix="/rooms", tags=["房间管理"])


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
def create_room(
    data: RoomCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """创建房间"""
    try:
        return RoomService(db).create_room(data)
    except StayError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[RoomResponse])
def list_rooms(
    status: Optional[RoomStatus] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """房间列表"""
    return RoomService(db).get_rooms(status)


@router.get("/{room_id}", response_model=RoomResponse)
def get_room(
    room_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """房间详情"""
    room = RoomService(db).get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="房间不存在")
    return room


@router.put("/assign", response_model=RoomResponse)
def assign_room(
    data: RoomAssign,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """按房间号预留给客人（available → reserved）"""
    try:
        return RoomService(db).reserve(data.room_number, data.guest_id, data.hours_stay)
    except StayError as e:
        raise to_http_exception(e)


@router.post("/{room_id}/checkout")
def check_out_room(
    room_id: int,
    data: Optional[RoomCheckOutRequest] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """退房；房间已空闲时直接返回"""
    reason = data.reason if data else None
    try:
        result = CheckOutService(db).check_out(room_id, reason)
    except StayError as e:
        raise to_http_exception(e)

    return {
        "message": f"房间 {result.room.room_number} 已退房" if result.changed
        else f"房间 {result.room.room_number} 已是空闲状态",
        "room": RoomResponse.model_validate(result.room),
        "reason": result.reason,
        "stay_record_id": result.stay_record.id if result.stay_record else None,
        "released_rfids": [tag.rfid_uid for tag in result.released_rfids],
    }
