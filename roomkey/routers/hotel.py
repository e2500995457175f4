"""
前台登记路由
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session
from roomkey.database import get_db
from roomkey.models.ontology import Admin
from roomkey.models.schemas import RegistrationRequest, RegistrationResponse, RfidTagResponse
from roomkey.services.errors import StayError
from roomkey.services.registration_service import RegistrationService
from roomkey.security.auth import get_current_admin
from roomkey.routers.common import to_http_exception

router = APIRouter(prefix="/hotel", tags=["前台登记"])


@router.post("/checkin-flow", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
def checkin_flow(
    data: RegistrationRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """登记入住：预留房间 + 分配凭证 + 新建入住记录；重复登记返回 200 与已有记录"""
    service = RegistrationService(db)
    try:
        result = service.register(
            guest_id=data.guest_id,
            room_number=data.room_number,
            credential_id=data.credential_id,
            hours_stay=data.hours_stay,
            check_in=data.check_in,
            check_out=data.check_out,
        )
    except StayError as e:
        raise to_http_exception(e)

    if result.idempotent:
        response.status_code = status.HTTP_200_OK
        message = "客人已登记入住"
    else:
        message = "登记成功"
    return RegistrationResponse(
        message=message,
        room_id=result.room.id,
        stay_id=result.stay.id,
        credential=RfidTagResponse.model_validate(result.tag),
        idempotent=result.idempotent,
    )
