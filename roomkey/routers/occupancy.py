"""
入住记录路由
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from roomkey.database import get_db
from roomkey.models.ontology import Admin
from roomkey.models.schemas import StayRecordResponse, StayCheckInRequest, StayCheckOutRequest
from roomkey.services.errors import StayError
from roomkey.services.stay_record_service import StayRecordService
from roomkey.security.auth import get_current_admin
from roomkey.routers.common import to_http_exception

router = APIRouter(prefix="/occupancy", tags=["入住记录"])


@router.get("", response_model=List[StayRecordResponse])
def list_records(
    open_only: bool = False,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """入住记录列表（最新在前）"""
    return StayRecordService(db).list_records(open_only=open_only, limit=limit)


@router.get("/search", response_model=List[StayRecordResponse])
def search_records(
    query: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """按客人信息搜索"""
    try:
        return StayRecordService(db).search(query)
    except StayError as e:
        raise to_http_exception(e)


@router.get("/{stay_id}", response_model=StayRecordResponse)
def get_record(
    stay_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    record = StayRecordService(db).get(stay_id)
    if not record:
        raise HTTPException(status_code=404, detail="入住记录不存在")
    return record


@router.post("/{stay_id}/checkin", response_model=StayRecordResponse)
def stamp_check_in(
    stay_id: int,
    data: Optional[StayCheckInRequest] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """写入入住时间（管理员修正会覆盖已有值）"""
    data = data or StayCheckInRequest()
    try:
        return StayRecordService(db).stamp_check_in(
            stay_id, check_in=data.check_in, hours_stay=data.hours_stay, overwrite=True
        )
    except StayError as e:
        raise to_http_exception(e)


@router.post("/{stay_id}/checkout", response_model=StayRecordResponse)
def close_record(
    stay_id: int,
    data: Optional[StayCheckOutRequest] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """关闭入住记录"""
    data = data or StayCheckOutRequest()
    service = StayRecordService(db)
    try:
        record, changed = service.close(stay_id, reason=data.check_out_reason, closed_at=data.check_out)
    except StayError as e:
        raise to_http_exception(e)
    if not changed:
        raise HTTPException(status_code=409, detail="入住记录已关闭")
    return record
