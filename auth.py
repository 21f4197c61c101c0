"""
身分驗證：只驗證 Bearer token

註冊 / 登入由外部服務負責，這裡只做：
1. create_access_token：簽發 JWT（給外部登入服務與測試使用）
2. get_current_user：FastAPI dependency，解析 token 並載入 User
3. user_from_token：WebSocket 連線時使用（token 走 query string）
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from database import get_db, get_settings
from models import User

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_user_id(token: Optional[str]) -> Optional[int]:
    """解析 token，失敗一律回傳 None"""
    if not token:
        return None
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        subject = payload.get("sub")
        return int(subject) if subject is not None else None
    except (JWTError, ValueError):
        return None


def user_from_token(db: Session, token: Optional[str]) -> Optional[User]:
    user_id = decode_user_id(token)
    if user_id is None:
        return None
    return db.query(User).filter(User.id == user_id).first()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token, authorization denied.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = user_from_token(db, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not valid.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
