"""
定时任务路由 - 手动触发一次扫描
"""
from fastapi import APIRouter, Depends, HTTPException
from core.scheduler import SchedulerRegistry
from sqlalchemy.orm import Session
from roomkey.database import get_db
from roomkey.models.ontology import Admin
from roomkey.models.schemas import SchedulerRunResponse
from roomkey.services.expiry_service import ExpiryService
from roomkey.security.auth import get_current_admin

router = APIRouter(prefix="/scheduler", tags=["定时任务"])

_PASSES = {
    "warning": ExpiryService.run_warning_pass,
    "expiry": ExpiryService.run_expiry_pass,
    "no-show": ExpiryService.run_no_show_sweep,
}


@router.post("/run/{pass_name}", response_model=SchedulerRunResponse)
def run_pass(
    pass_name: str,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_admin)
):
    """立即执行 warning / expiry / no-show 扫描"""
    run = _PASSES.get(pass_name)
    if run is None:
        raise HTTPException(status_code=404, detail=f"未知的扫描: {pass_name}")
    return SchedulerRunResponse(job=pass_name, affected=run(ExpiryService(db)))


@router.get("/jobs")
def list_jobs(current_admin: Admin = Depends(get_current_admin)):
    """已登记的周期任务；未启用调度时返回空列表"""
    backend = SchedulerRegistry().get_backend()
    return backend.get_jobs() if backend else []
