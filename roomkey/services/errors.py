"""
业务异常 - 与 HTTP 状态码一一对应
均继承 ValueError，沿用 "服务抛 ValueError，路由转 HTTPException" 的约定
"""
from enum import Enum
from typing import Any, Dict, Optional


class StayError(ValueError):
    """业务异常基类"""
    status_code = 400

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ValidationError(StayError):
    """输入不合法（缺字段、时间范围错误），不重试"""
    status_code = 400


class NotFoundError(StayError):
    """房间 / 凭证 / 客人不存在"""
    status_code = 404


class ConflictError(StayError):
    """资源不处于期望的前置状态"""
    status_code = 409


class DenyReason(str, Enum):
    """拒绝开门的原因"""
    INVALID_CREDENTIAL_STATUS = "invalid_credential_status"
    NO_HOLDER = "no_holder"
    NO_RESERVATION = "no_reservation"
    AMBIGUOUS_ROOM = "ambiguous_room"
    ALREADY_CHECKED_OUT = "already_checked_out"
    STAY_ENDED = "stay_ended"


class AccessDeniedError(StayError):
    """刷卡被拒（fail closed）"""
    status_code = 403

    def __init__(self, reason: DenyReason, detail: str, context: Optional[Dict[str, Any]] = None):
        self.reason = reason
        self.context = context or {}
        super().__init__(detail)


class DependencyError(RuntimeError):
    """存储或下游不可用；刷卡直接拒绝，定时任务下一轮重试"""
    status_code = 503

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)
