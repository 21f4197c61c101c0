"""
Swap Manager：管理交換提議的完整生命週期

職責：
1. 提議（propose）：鎖住雙方 slot，建立 PENDING 請求
2. 回應（respond）：接受則交換擁有者，拒絕則解鎖
3. 撤回（withdraw）：發起者取消 PENDING 請求並解鎖
4. 移除（dismiss）：發起者刪除已結案的請求
5. 查詢：市場上可交換的 slot、收到的請求、送出的請求

原則：
- 先檢查、後寫入：任何前置條件失敗都保證沒有寫入
- 每個會寫入的操作都包在 @transactional 內，全部成功或全部 rollback
- 通知不在這裡送：回傳 Notice 列表，由 API 層在 commit 後排程
"""
from sqlalchemy.orm import Session, aliased
from typing import Any, Dict, List, Optional, Tuple
import logging

from models import Slot, SwapRequest, User, SlotStatus, SwapRequestStatus
from core.state_machine import SwapRequestStateMachine, SlotStateMachine
from core.locks import (
    lock_slots,
    with_swap_request_lock,
    claim_pending_request,
    claim_swappable_slots,
    release_pending_slot
)
from core.exceptions import (
    MissingSlotIds,
    SlotNotFound,
    NotSlotOwner,
    SelfSwapNotAllowed,
    SlotNotSwappable,
    SwapRequestNotFound,
    NotRequestReceiver,
    NotRequestRequester,
    RequestAlreadyHandled,
    RequestStillPending
)
from services.naming_service import display_name
from services.notification_service import (
    Notice,
    NEW_REQUEST,
    REQUEST_RESPONSE,
    REQUEST_WITHDRAWN,
    MARKETPLACE_UPDATE
)
from database import transactional

logger = logging.getLogger(__name__)


def _load_pair(db: Session, first_id: int, second_id: int) -> Tuple[Optional[Slot], Optional[Slot]]:
    """一次鎖住兩個 slot，依原本的順序回傳"""
    slots = {slot.id: slot for slot in lock_slots([first_id, second_id], db).all()}
    return slots.get(first_id), slots.get(second_id)


class SwapManager:
    """交換協商引擎"""

    @staticmethod
    def list_swappable_slots(db: Session, requester_id: int) -> List[Dict[str, Any]]:
        """
        市場：其他人標記為 SWAPPABLE 的 slot

        返回：
            每筆包含 slot 欄位與 owner_name
        """
        rows = (
            db.query(Slot, User)
            .join(User, Slot.user_id == User.id)
            .filter(Slot.status == SlotStatus.SWAPPABLE, Slot.user_id != requester_id)
            .order_by(Slot.start_time, Slot.id)
            .all()
        )

        return [
            {
                "id": slot.id,
                "title": slot.title,
                "start_time": slot.start_time,
                "end_time": slot.end_time,
                "status": slot.status,
                "user_id": slot.user_id,
                "owner_name": display_name(owner),
            }
            for slot, owner in rows
        ]

    @staticmethod
    @transactional
    def create_request(
        db: Session,
        requester_id: int,
        offered_slot_id: Optional[int],
        target_slot_id: Optional[int]
    ) -> Tuple[SwapRequest, List[Notice]]:
        """
        提議交換：用自己的 offered slot 換對方的 target slot

        前置條件（依序檢查，各自對應不同錯誤）：
        1. 兩個 slot id 都有給
        2. 兩個 slot 都存在
        3. offered slot 屬於提議者
        4. target slot 不屬於提議者
        5. 兩個 slot 都是 SWAPPABLE

        流程：
        1. 鎖住兩個 slot 並驗證
        2. compare-and-set 把兩個 slot 改成 SWAP_PENDING
        3. 建立 PENDING 請求

        返回：
            (SwapRequest, 待送出的通知)

        異常：
            MissingSlotIds, SlotNotFound, NotSlotOwner,
            SelfSwapNotAllowed, SlotNotSwappable
        """
        if not offered_slot_id or not target_slot_id:
            raise MissingSlotIds()

        # 1. 鎖住並驗證
        offered, target = _load_pair(db, offered_slot_id, target_slot_id)
        if offered is None or target is None:
            raise SlotNotFound(message="One or both slots not found.")

        if offered.user_id != requester_id:
            raise NotSlotOwner("You do not own the slot you are offering.")

        if target.user_id == requester_id:
            raise SelfSwapNotAllowed()

        if offered.status != SlotStatus.SWAPPABLE or target.status != SlotStatus.SWAPPABLE:
            raise SlotNotSwappable()

        receiver_id = target.user_id

        # 2. 鎖定雙方 slot（SWAPPABLE -> SWAP_PENDING）
        claim_swappable_slots(db, [offered.id, target.id])

        # 3. 建立請求
        swap_request = SwapRequest(
            requester_slot_id=offered.id,
            receiver_slot_id=target.id,
            requester_id=requester_id,
            receiver_id=receiver_id,
            status=SwapRequestStatus.PENDING
        )
        db.add(swap_request)
        db.flush()  # 取得 swap_request.id

        logger.info(
            f"User {requester_id} proposed swap {swap_request.id}: "
            f"slot {offered.id} for slot {target.id} (owner {receiver_id})"
        )

        notices = [
            Notice.to_user(receiver_id, NEW_REQUEST, swapRequestId=swap_request.id),
            Notice.broadcast(MARKETPLACE_UPDATE, exclude_user_id=requester_id),
        ]
        return swap_request, notices

    @staticmethod
    @transactional
    def respond(
        db: Session,
        responder_id: int,
        request_id: int,
        acceptance: bool
    ) -> Tuple[SwapRequest, List[Notice]]:
        """
        回應交換請求（接受 / 拒絕）

        前置條件：
        1. 請求存在
        2. 請求狀態必須是 PENDING（每個請求只會被處理一次）
        3. 兩個 slot 都還存在
        4. 回應者必須是 receiver slot 的擁有者

        接受：
            請求 -> ACCEPTED；兩個 slot 交換擁有者；兩個 slot -> BUSY
        拒絕：
            請求 -> REJECTED；擁有者不變；兩個 slot -> SWAPPABLE

        這是唯一會改變 slot 擁有者的操作

        異常：
            SwapRequestNotFound, RequestAlreadyHandled,
            SlotNotFound, NotRequestReceiver
        """
        # 1. 鎖住請求
        swap_request = with_swap_request_lock(request_id, db).first()
        if not swap_request:
            raise SwapRequestNotFound(request_id)

        # 2. 只有 PENDING 可以回應
        if swap_request.status != SwapRequestStatus.PENDING:
            raise RequestAlreadyHandled()

        # 3. 鎖住雙方 slot
        requester_slot, receiver_slot = _load_pair(
            db, swap_request.requester_slot_id, swap_request.receiver_slot_id
        )
        if requester_slot is None or receiver_slot is None:
            raise SlotNotFound(message="Event no longer exists.")

        # 4. 只有 receiver 可以回應
        if receiver_slot.user_id != responder_id:
            raise NotRequestReceiver()

        target_status = SwapRequestStatus.ACCEPTED if acceptance else SwapRequestStatus.REJECTED
        slot_status = SlotStatus.BUSY if acceptance else SlotStatus.SWAPPABLE

        SwapRequestStateMachine.ensure(swap_request.status, target_status)
        SlotStateMachine.ensure_engine_change(requester_slot.status, slot_status)
        SlotStateMachine.ensure_engine_change(receiver_slot.status, slot_status)

        requester_owner = requester_slot.user_id
        receiver_owner = receiver_slot.user_id

        # 5. 寫入：請求狀態（序列化點）-> slot
        claim_pending_request(db, swap_request, target_status)

        if acceptance:
            release_pending_slot(db, requester_slot, receiver_owner, slot_status)
            release_pending_slot(db, receiver_slot, requester_owner, slot_status)
        else:
            release_pending_slot(db, requester_slot, requester_owner, slot_status)
            release_pending_slot(db, receiver_slot, receiver_owner, slot_status)

        logger.info(
            f"Swap {swap_request.id} {target_status.value} by user {responder_id}"
        )

        notices = [
            Notice.to_user(
                requester_owner,
                REQUEST_RESPONSE,
                status=target_status.value,
                swapRequestId=swap_request.id
            ),
            Notice.broadcast(MARKETPLACE_UPDATE, exclude_user_id=responder_id),
        ]
        return swap_request, notices

    @staticmethod
    @transactional
    def withdraw(db: Session, user_id: int, request_id: int) -> List[Notice]:
        """
        撤回自己送出、仍在 PENDING 的請求

        流程：
        1. 驗證請求存在、呼叫者是發起者、狀態是 PENDING
        2. 兩個 slot 解鎖回 SWAPPABLE
        3. 刪除請求

        異常：
            SwapRequestNotFound, NotRequestRequester, RequestAlreadyHandled
        """
        swap_request = with_swap_request_lock(request_id, db).first()
        if not swap_request:
            raise SwapRequestNotFound(request_id)

        if swap_request.requester_id != user_id:
            raise NotRequestRequester()

        if swap_request.status != SwapRequestStatus.PENDING:
            raise RequestAlreadyHandled("Only pending requests can be withdrawn.")

        requester_slot, receiver_slot = _load_pair(
            db, swap_request.requester_slot_id, swap_request.receiver_slot_id
        )
        if requester_slot is None or receiver_slot is None:
            raise SlotNotFound(message="Event no longer exists.")

        SlotStateMachine.ensure_engine_change(requester_slot.status, SlotStatus.SWAPPABLE)
        SlotStateMachine.ensure_engine_change(receiver_slot.status, SlotStatus.SWAPPABLE)

        receiver_owner = receiver_slot.user_id
        release_pending_slot(db, requester_slot, requester_slot.user_id, SlotStatus.SWAPPABLE)
        release_pending_slot(db, receiver_slot, receiver_owner, SlotStatus.SWAPPABLE)
        db.delete(swap_request)

        logger.info(f"Swap {request_id} withdrawn by user {user_id}")

        return [
            Notice.to_user(receiver_owner, REQUEST_WITHDRAWN, swapRequestId=request_id),
            Notice.broadcast(MARKETPLACE_UPDATE, exclude_user_id=user_id),
        ]

    @staticmethod
    @transactional
    def dismiss(db: Session, user_id: int, request_id: int) -> None:
        """
        移除已結案（ACCEPTED / REJECTED）的請求

        只刪除請求本身，不動 slot（結案時 slot 已經離開 SWAP_PENDING）
        PENDING 的請求不能移除，否則兩個 slot 會卡在 SWAP_PENDING

        異常：
            SwapRequestNotFound, NotRequestRequester, RequestStillPending
        """
        swap_request = with_swap_request_lock(request_id, db).first()
        if not swap_request:
            raise SwapRequestNotFound(request_id)

        if swap_request.requester_id != user_id:
            raise NotRequestRequester("Forbidden.")

        if not SwapRequestStateMachine.is_terminal(swap_request.status):
            raise RequestStillPending()

        db.delete(swap_request)
        logger.info(f"Swap {request_id} dismissed by user {user_id}")

    @staticmethod
    def list_incoming(db: Session, user_id: int) -> List[Dict[str, Any]]:
        """
        別人提給我的、還在 PENDING 的請求

        每筆顯示發起者名稱與對方提供的 slot（我自己的 slot 不用再顯示）
        """
        requester_slot = aliased(Slot)
        receiver_slot = aliased(Slot)
        requester = aliased(User)

        rows = (
            db.query(SwapRequest, requester_slot, requester)
            .join(receiver_slot, SwapRequest.receiver_slot_id == receiver_slot.id)
            .join(requester_slot, SwapRequest.requester_slot_id == requester_slot.id)
            .join(requester, SwapRequest.requester_id == requester.id)
            .filter(
                receiver_slot.user_id == user_id,
                SwapRequest.status == SwapRequestStatus.PENDING
            )
            .order_by(SwapRequest.id)
            .all()
        )

        return [
            {
                "swap_request_id": swap_request.id,
                "requester_slot_id": slot.id,
                "requester_slot_title": slot.title,
                "requester_slot_start_time": slot.start_time,
                "requester_slot_end_time": slot.end_time,
                "requester_name": display_name(user),
            }
            for swap_request, slot, user in rows
        ]

    @staticmethod
    def list_outgoing(db: Session, user_id: int) -> List[Dict[str, Any]]:
        """
        我送出的所有請求（PENDING / ACCEPTED / REJECTED）

        以建立時記錄的 requester_id 判斷，接受後 slot 換了主人也還查得到
        """
        receiver_slot = aliased(Slot)
        receiver = aliased(User)

        rows = (
            db.query(SwapRequest, receiver_slot, receiver)
            .join(receiver_slot, SwapRequest.receiver_slot_id == receiver_slot.id)
            .join(receiver, SwapRequest.receiver_id == receiver.id)
            .filter(SwapRequest.requester_id == user_id)
            .order_by(SwapRequest.id)
            .all()
        )

        return [
            {
                "swap_request_id": swap_request.id,
                "status": swap_request.status,
                "receiver_slot_id": slot.id,
                "receiver_slot_title": slot.title,
                "receiver_slot_start_time": slot.start_time,
                "receiver_slot_end_time": slot.end_time,
                "receiver_name": display_name(user),
            }
            for swap_request, slot, user in rows
        ]
