from sqlalchemy import create_engine, event
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import List
import logging

from core.exceptions import SlotSwapperException, Conflict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./slot_swapper.db"
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    cors_origins: List[str] = ["http://localhost:5173"]
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()


def build_engine(database_url: str):
    """
    依 URL 建立 Engine

    SQLite 需要特殊設定：
    - check_same_thread=False：FastAPI 的同步 endpoint 跑在 threadpool
    - 開啟 foreign_keys，讓 swap_requests 的外鍵真的生效
    """
    is_sqlite = database_url.startswith("sqlite")
    new_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        pool_pre_ping=True
    )

    if is_sqlite:
        @event.listens_for(new_engine, "connect")
        def _enable_sqlite_fk(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def some_business_logic(db: Session, ...):
            slot = Slot(...)
            db.add(slot)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 異常會被重新拋出（讓上層處理）

    日誌分級：
        - 業務異常（驗證 / 權限 / 找不到）：INFO
        - 並發衝突（Conflict）：WARNING，方便和一般驗證錯誤區分
        - 其他異常：ERROR + traceback

    注意：
        - 第一個參數必須是 db: Session
        - 不要在函式內手動 commit（decorator 會處理）
        - commit 成功後才 return，呼叫者拿到結果時資料一定已經落地
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # 找出 db session（可能在 args 或 kwargs）
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Conflict as e:
            logger.warning(f"Conflict in {func.__name__} ({type(e).__name__}): {e}")
            db.rollback()
            raise
        except SlotSwapperException as e:
            logger.info(f"Rejected {func.__name__} ({type(e).__name__}): {e}")
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
