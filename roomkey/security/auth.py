"""
认证模块
- 管理员接口：Bearer JWT（sub = 管理员 id），令牌由外部账号服务签发
- 读卡器接口：X-API-Key 共享密钥
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, status, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session
from roomkey.config import settings
from roomkey.database import get_db
from roomkey.models.ontology import Admin

logger = logging.getLogger(__name__)

security = HTTPBearer()


def create_access_token(admin_id: int, expires_hours: Optional[int] = None) -> str:
    """创建 JWT token"""
    hours = expires_hours if expires_hours is not None else settings.ACCESS_TOKEN_EXPIRE_HOURS
    expire = datetime.now(timezone.utc) + timedelta(hours=hours)
    to_encode = {"sub": str(admin_id), "role": "admin", "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """解码 JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Admin:
    """获取当前登录管理员"""
    payload = decode_token(credentials.credentials)

    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证"
        )

    admin = db.query(Admin).filter(Admin.id == int(subject)).first()
    if not admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="管理员不存在"
        )
    if not admin.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="账号已停用"
        )
    return admin


async def require_reader_key(x_api_key: Optional[str] = Header(None)) -> None:
    """校验读卡器密钥；未配置 READER_API_KEY 时不校验"""
    expected = settings.READER_API_KEY
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        logger.warning("Rejected reader request with invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的读卡器密钥"
        )
