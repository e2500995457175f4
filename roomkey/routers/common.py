"""
路由公共工具：业务异常 → HTTPException
"""
from fastapi import HTTPException

from roomkey.services.errors import StayError, AccessDeniedError, DependencyError


def to_http_exception(error: Exception) -> HTTPException:
    if isinstance(error, AccessDeniedError):
        return HTTPException(
            status_code=error.status_code,
            detail={"message": error.detail, "reason": error.reason.value, "context": error.context},
        )
    if isinstance(error, (StayError, DependencyError)):
        return HTTPException(status_code=error.status_code, detail=error.detail)
    return HTTPException(status_code=400, detail=str(error))
