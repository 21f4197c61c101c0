"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

兩層保護：
1. 悲觀鎖：PostgreSQL 的 SELECT ... FOR UPDATE
2. Compare-and-set：UPDATE ... WHERE status = <預期狀態>，
   只有 rowcount 符合預期才算成功

SQLite 會忽略 FOR UPDATE，所以第 2 層才是真正的序列化點；
rowcount 不符時丟出 Conflict，由 @transactional 整批 rollback
"""
from datetime import datetime, timezone
from typing import List

from sqlalchemy.orm import Session, Query

from models import Slot, SwapRequest, SlotStatus, SwapRequestStatus
from core.exceptions import RequestAlreadyHandled, SlotNotSwappable, SlotLocked, Conflict


def with_slot_lock(slot_id: int, db: Session) -> Query:
    """
    鎖定一個 Slot（行級鎖）

    使用場景：
    - 擁有者編輯 / 刪除 / 切換狀態時

    返回：
        Query object（需要呼叫 .first() 取得結果）
    """
    return db.query(Slot).filter(
        Slot.id == slot_id
    ).with_for_update(nowait=False)


def lock_slots(slot_ids: List[int], db: Session) -> Query:
    """
    鎖定多個 Slots

    依 id 排序鎖定：兩個請求同時鎖 (A, B) 與 (B, A) 時，
    都會先鎖較小的 id，不會互相等待造成 deadlock

    返回：
        Query object（呼叫 .all() 取得所有結果）
    """
    return db.query(Slot).filter(
        Slot.id.in_(slot_ids)
    ).order_by(Slot.id).with_for_update(nowait=False)


def with_swap_request_lock(request_id: int, db: Session) -> Query:
    """
    鎖定一個 SwapRequest（行級鎖）

    使用場景：
    - 回應（accept / reject）時，確保只有一個回應能看到 PENDING
    - 撤回 / 移除時
    """
    return db.query(SwapRequest).filter(
        SwapRequest.id == request_id
    ).with_for_update(nowait=False)


def claim_pending_request(db: Session, request: SwapRequest, target: SwapRequestStatus) -> None:
    """
    把 PENDING 的請求改成終態（compare-and-set）

    這是 respond() 唯一的序列化點：兩個回應同時進來時，
    只有一個的 UPDATE 會命中 status = PENDING 的那一列

    異常：
        RequestAlreadyHandled: 請求已經不是 PENDING
    """
    updated = db.query(SwapRequest).filter(
        SwapRequest.id == request.id,
        SwapRequest.status == SwapRequestStatus.PENDING
    ).update(
        {
            SwapRequest.status: target,
            SwapRequest.responded_at: datetime.now(timezone.utc)
        },
        synchronize_session=False
    )
    if updated != 1:
        raise RequestAlreadyHandled()
    db.refresh(request)


def claim_swappable_slots(db: Session, slot_ids: List[int]) -> None:
    """
    把兩個 SWAPPABLE 的 slot 一起改成 SWAP_PENDING（compare-and-set）

    兩個提議同時搶同一個 slot 時，後到的 UPDATE 只會命中一列，
    整個提議會被 rollback

    異常：
        SlotNotSwappable: 至少一個 slot 已經不是 SWAPPABLE
    """
    updated = db.query(Slot).filter(
        Slot.id.in_(slot_ids),
        Slot.status == SlotStatus.SWAPPABLE
    ).update({Slot.status: SlotStatus.SWAP_PENDING}, synchronize_session=False)
    if updated != len(slot_ids):
        raise SlotNotSwappable()
    for slot_id in slot_ids:
        slot = db.get(Slot, slot_id)
        if slot is not None:
            db.refresh(slot)


def release_pending_slot(db: Session, slot: Slot, owner_id: int, target: SlotStatus) -> None:
    """
    讓一個 SWAP_PENDING 的 slot 離開鎖定狀態，並指定新擁有者

    accept：owner_id 是交換後的新擁有者，target = BUSY
    reject / withdraw：owner_id 不變，target = SWAPPABLE

    條件同時比對讀取時的擁有者與 SWAP_PENDING

    異常：
        Conflict: slot 已經不在 SWAP_PENDING 或換了主人（不變量被破壞）
    """
    updated = db.query(Slot).filter(
        Slot.id == slot.id,
        Slot.user_id == slot.user_id,
        Slot.status == SlotStatus.SWAP_PENDING
    ).update(
        {Slot.user_id: owner_id, Slot.status: target},
        synchronize_session=False
    )
    if updated != 1:
        raise Conflict(f"Event {slot.id} is no longer pending a swap.")
    db.refresh(slot)


def update_unlocked_slot(db: Session, slot: Slot, values: dict, message: str) -> None:
    """
    擁有者寫入 slot（compare-and-set）

    條件比對讀取時的擁有者與狀態；讀取之後若有提議把它改成
    SWAP_PENDING，這個 UPDATE 不會命中任何一列

    異常：
        SlotLocked: slot 在讀取後被鎖定或換了主人
    """
    updated = db.query(Slot).filter(
        Slot.id == slot.id,
        Slot.user_id == slot.user_id,
        Slot.status == slot.status,
        Slot.status != SlotStatus.SWAP_PENDING
    ).update(values, synchronize_session=False)
    if updated != 1:
        raise SlotLocked(message)
    db.refresh(slot)


def delete_unlocked_slot(db: Session, slot: Slot, message: str) -> None:
    """
    擁有者刪除 slot（compare-and-set），條件同 update_unlocked_slot

    異常：
        SlotLocked: slot 在讀取後被鎖定或換了主人
    """
    deleted = db.query(Slot).filter(
        Slot.id == slot.id,
        Slot.user_id == slot.user_id,
        Slot.status == slot.status,
        Slot.status != SlotStatus.SWAP_PENDING
    ).delete(synchronize_session=False)
    if deleted != 1:
        raise SlotLocked(message)
    db.expunge(slot)
