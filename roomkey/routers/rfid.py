"""
RFID 凭证路由
管理员维护凭证；读卡器调用 /rfid/verify
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from roomkey.database import get_db
from roomkey.models.ontology import Admin, Guest
from roomkey.models.schemas import (
    RfidTagCreate, RfidUidRequest, RfidAssignRequest, RfidStatusUpdate,
    RfidTagResponse, RoomResponse, VerifyRequest, VerifyResponse
)
from roomkey.services.errors import StayError, DependencyError
from roomkey.services.rfid_service import RfidService, TransitionOutcome
from roomkey.services.verification_service import VerificationService
from roomkey.security.auth import get_current_admin, require_reader_key
from roomkey.routers.common import to_http_exception

router = APIRouter(prefix="/rfid", tags=["RFID 凭证"])


def _outcome_body(message: str, outcome: TransitionOutcome) -> dict:
    return {"message": message, "rfid": RfidTagResponse.model_validate(outcome.tag)}


def _not_applied(outcome: TransitionOutcome, action: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"RFID {outcome.tag.rfid_uid} 当前状态为 {outcome.tag.status.value}，无法{action}"
    )


@router.get("/all", response_model=List[RfidTagResponse])
def list_all_tags(
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """全部凭证"""
    return RfidService(db).get_all()


@router.get("/available", response_model=List[RfidTagResponse])
def list_available_tags(
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """可分配凭证"""
    return RfidService(db).get_available()


@router.post("", response_model=RfidTagResponse, status_code=status.HTTP_201_CREATED)
def create_tag(
    data: RfidTagCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """登记新凭证"""
    try:
        return RfidService(db).create_tag(data.rfid_uid)
    except StayError as e:
        raise to_http_exception(e)


@router.post("/assign", status_code=status.HTTP_201_CREATED)
def assign_tag(
    data: RfidAssignRequest,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """分配凭证给客人"""
    if not data.rfid_uid or not data.guest_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="guest_id 和 rfid_uid 不能为空")
    if not db.query(Guest).filter(Guest.id == data.guest_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="客人不存在")

    try:
        outcome = RfidService(db).assign(data.rfid_uid, data.guest_id)
    except StayError as e:
        raise to_http_exception(e)
    if not outcome.changed:
        raise _not_applied(outcome, "分配")
    return _outcome_body(f"RFID {data.rfid_uid} 已分配给客人 {data.guest_id}", outcome)


@router.post("/activate")
def activate_tag(
    data: RfidUidRequest,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """激活凭证（assigned → active）"""
    try:
        outcome = RfidService(db).activate(data.rfid_uid)
    except StayError as e:
        raise to_http_exception(e)
    if not outcome.changed:
        raise _not_applied(outcome, "激活")
    return _outcome_body(f"RFID {data.rfid_uid} 已激活", outcome)


@router.post("/lost")
def mark_tag_lost(
    data: RfidUidRequest,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """挂失"""
    try:
        outcome = RfidService(db).mark_lost(data.rfid_uid)
    except StayError as e:
        raise to_http_exception(e)
    if not outcome.changed:
        raise _not_applied(outcome, "挂失")
    return _outcome_body(f"RFID {data.rfid_uid} 已挂失", outcome)


@router.post("/unassign")
def unassign_tag(
    data: RfidUidRequest,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """回收凭证（→ available）；已是 available 时直接返回"""
    try:
        outcome = RfidService(db).unassign(data.rfid_uid)
    except StayError as e:
        raise to_http_exception(e)
    if not outcome.changed:
        return _outcome_body(f"RFID {data.rfid_uid} 已是 available", outcome)
    return _outcome_body(f"RFID {data.rfid_uid} 已回收", outcome)


@router.put("/update-status")
def update_tag_status(
    data: RfidStatusUpdate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """直接设置凭证状态；已处于该状态时不做变更"""
    try:
        outcome = RfidService(db).update_status(data.rfid_uid, data.status)
    except StayError as e:
        raise to_http_exception(e)
    if not outcome.changed:
        if outcome.tag.status.value == data.status.lower():
            return _outcome_body(f"RFID {data.rfid_uid} 状态未变化", outcome)
        raise _not_applied(outcome, f"变更为 {data.status}")
    return _outcome_body(f"RFID {data.rfid_uid} 状态已更新为 {outcome.tag.status.value}", outcome)


@router.post("/verify", response_model=VerifyResponse, dependencies=[Depends(require_reader_key)])
def verify_tag(
    data: VerifyRequest,
    db: Session = Depends(get_db)
):
    """读卡器刷卡验证"""
    try:
        result = VerificationService(db).verify(data.rfid_uid, data.room_number)
    except (StayError, DependencyError) as e:
        raise to_http_exception(e)

    return VerifyResponse(
        message="入住成功，欢迎" if result.promoted_room else "验证通过",
        rfid=RfidTagResponse.model_validate(result.tag),
        guest=result.guest,
        room=RoomResponse.model_validate(result.room),
        stay_id=result.stay.id,
        promoted_room=result.promoted_room,
        activated_rfid=result.activated_rfid,
    )
