"""
Slot Manager：擁有者對自己 slot 的操作

職責：
1. 建立 slot（預設 BUSY）
2. 切換 BUSY / SWAPPABLE
3. 編輯、刪除

所有寫入都會先檢查 slot 是否 SWAP_PENDING：
協商中的 slot 不論是誰都不能編輯 / 刪除 / 切換狀態，
只有 SwapManager 能讓它離開 SWAP_PENDING

檢查之後的寫入走 core.locks 的 compare-and-set：
讀取到寫入之間若有提議鎖住 slot，寫入會落空並丟出 SlotLocked
"""
from datetime import datetime, timezone
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from models import Slot, SwapRequest, SlotStatus, SwapRequestStatus
from core.state_machine import SlotStateMachine
from core.locks import with_slot_lock, update_unlocked_slot, delete_unlocked_slot
from core.exceptions import (
    SlotNotFound,
    NotSlotOwner,
    SlotLocked,
    InvalidSlotStatus,
    InvalidTimeRange,
    MissingFields
)
from database import transactional

logger = logging.getLogger(__name__)


def normalize_time(value: datetime) -> datetime:
    """沒有時區的時間一律視為 UTC，有時區的轉成 UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _validated_range(
    title: Optional[str],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
    missing_message: str = "Please provide title, startTime, and endTime."
):
    if not title or start_time is None or end_time is None:
        raise MissingFields(missing_message)
    start_time = normalize_time(start_time)
    end_time = normalize_time(end_time)
    if start_time >= end_time:
        raise InvalidTimeRange()
    return start_time, end_time


def _owned_slot(db: Session, user_id: int, slot_id: int) -> Slot:
    """鎖住 slot 並確認擁有者"""
    slot = with_slot_lock(slot_id, db).first()
    if not slot:
        raise SlotNotFound(slot_id)
    if slot.user_id != user_id:
        raise NotSlotOwner()
    return slot


class SlotManager:
    """Slot 擁有者操作"""

    @staticmethod
    @transactional
    def create_slot(
        db: Session,
        user_id: int,
        title: Optional[str],
        start_time: Optional[datetime],
        end_time: Optional[datetime]
    ) -> Slot:
        """
        建立新 slot，狀態固定為 BUSY

        異常：
            MissingFields: 欄位不完整
            InvalidTimeRange: start_time >= end_time
        """
        start_time, end_time = _validated_range(title, start_time, end_time)

        slot = Slot(
            title=title,
            start_time=start_time,
            end_time=end_time,
            status=SlotStatus.BUSY,
            user_id=user_id
        )
        db.add(slot)
        db.flush()

        logger.info(f"User {user_id} created slot {slot.id}")
        return slot

    @staticmethod
    def list_user_slots(db: Session, user_id: int) -> List[Slot]:
        return db.query(Slot).filter(
            Slot.user_id == user_id
        ).order_by(Slot.start_time, Slot.id).all()

    @staticmethod
    @transactional
    def set_status(db: Session, user_id: int, slot_id: int, status: Optional[str]) -> Slot:
        """
        擁有者切換 BUSY / SWAPPABLE

        異常：
            InvalidSlotStatus: 目標不是 BUSY / SWAPPABLE
            SlotNotFound, NotSlotOwner
            SlotLocked: slot 正在協商中
        """
        try:
            status = SlotStatus(status)
        except ValueError:
            raise InvalidSlotStatus()
        if status not in SlotStateMachine.OWNER_SETTABLE:
            raise InvalidSlotStatus()

        slot = _owned_slot(db, user_id, slot_id)
        SlotStateMachine.ensure_owner_change(slot.status, status)

        update_unlocked_slot(
            db, slot, {Slot.status: status}, "Cannot change status of pending event."
        )
        logger.info(f"User {user_id} set slot {slot_id} to {status.value}")
        return slot

    @staticmethod
    @transactional
    def update_slot(
        db: Session,
        user_id: int,
        slot_id: int,
        title: Optional[str],
        start_time: Optional[datetime],
        end_time: Optional[datetime]
    ) -> Slot:
        """
        編輯 slot 的標題與時間

        異常：
            MissingFields, InvalidTimeRange, SlotNotFound, NotSlotOwner
            SlotLocked: slot 正在協商中
        """
        start_time, end_time = _validated_range(
            title, start_time, end_time, missing_message="All fields are required."
        )

        slot = _owned_slot(db, user_id, slot_id)
        if slot.status == SlotStatus.SWAP_PENDING:
            raise SlotLocked("Cannot edit pending event.")

        update_unlocked_slot(
            db,
            slot,
            {Slot.title: title, Slot.start_time: start_time, Slot.end_time: end_time},
            "Cannot edit pending event."
        )
        return slot

    @staticmethod
    @transactional
    def delete_slot(db: Session, user_id: int, slot_id: int) -> None:
        """
        刪除 slot

        已結案（ACCEPTED / REJECTED）的請求一併刪除，避免外鍵殘留；
        PENDING 的請求不動，若讀取後才出現，slot 的 compare-and-set 會失敗並 rollback

        異常：
            SlotNotFound, NotSlotOwner
            SlotLocked: slot 正在協商中
        """
        slot = _owned_slot(db, user_id, slot_id)
        if slot.status == SlotStatus.SWAP_PENDING:
            raise SlotLocked("Cannot delete pending event.")

        resolved = db.query(SwapRequest).filter(
            or_(
                SwapRequest.requester_slot_id == slot_id,
                SwapRequest.receiver_slot_id == slot_id
            ),
            SwapRequest.status != SwapRequestStatus.PENDING
        ).delete(synchronize_session=False)

        delete_unlocked_slot(db, slot, "Cannot delete pending event.")
        logger.info(
            f"User {user_id} deleted slot {slot_id} (removed {resolved} resolved requests)"
        )
