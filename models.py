"""
資料模型

三張表：
- users：只讀（註冊 / 登入由外部服務負責）
- events：Slot，使用者擁有的時段
- swap_requests：交換提議（一個 slot 換另一個 slot）

注意：
    Slot.status 的 SWAP_PENDING 同時扮演兩個角色：
    1. 顯示狀態（前端顯示「交換中」）
    2. 並發鎖（被 PENDING 請求引用的 slot 不可再被提議 / 編輯 / 刪除）
    不變量：status == SWAP_PENDING <=> 被至少一個 PENDING 的 swap request 引用
"""
import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Enum,
    ForeignKey,
    CheckConstraint,
    func
)

from database import Base


class SlotStatus(str, enum.Enum):
    BUSY = "BUSY"
    SWAPPABLE = "SWAPPABLE"
    SWAP_PENDING = "SWAP_PENDING"


class SwapRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, unique=True, index=True)


class Slot(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_events_time_range"),
    )

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(SlotStatus, name="slot_status"),
        nullable=False,
        default=SlotStatus.BUSY,
        index=True
    )
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)


class SwapRequest(Base):
    __tablename__ = "swap_requests"

    id = Column(Integer, primary_key=True)
    requester_slot_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    receiver_slot_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    # 建立時的雙方使用者；接受後 slot 會換主人，這兩欄不變
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(
        Enum(SwapRequestStatus, name="swap_request_status"),
        nullable=False,
        default=SwapRequestStatus.PENDING,
        index=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)
