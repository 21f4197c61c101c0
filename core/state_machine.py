"""
狀態機：集中定義所有合法的狀態轉換

Swap request：
    PENDING --accept--> ACCEPTED（終態）
    PENDING --reject--> REJECTED（終態）
    終態之後只能被 dismiss（刪除），不會再轉換

Slot：
    擁有者可以做的：BUSY <-> SWAPPABLE
    交換引擎可以做的：
        SWAPPABLE    -> SWAP_PENDING（propose）
        SWAP_PENDING -> BUSY        （accept）
        SWAP_PENDING -> SWAPPABLE   （reject / withdraw）

這裡只負責「能不能轉」，真正寫入 DB 由 core.locks 的 compare-and-set 處理
"""
from models import SlotStatus, SwapRequestStatus
from core.exceptions import InvalidStateTransition, SlotLocked, InvalidSlotStatus


class SwapRequestStateMachine:
    """Swap request 狀態機"""

    TRANSITIONS = {
        SwapRequestStatus.PENDING: {SwapRequestStatus.ACCEPTED, SwapRequestStatus.REJECTED},
        SwapRequestStatus.ACCEPTED: set(),
        SwapRequestStatus.REJECTED: set(),
    }

    @classmethod
    def can_transition(cls, current: SwapRequestStatus, target: SwapRequestStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @classmethod
    def ensure(cls, current: SwapRequestStatus, target: SwapRequestStatus) -> None:
        if not cls.can_transition(current, target):
            raise InvalidStateTransition(
                f"Swap request cannot go from {current.value} to {target.value}"
            )

    @staticmethod
    def is_terminal(status: SwapRequestStatus) -> bool:
        return status in (SwapRequestStatus.ACCEPTED, SwapRequestStatus.REJECTED)


class SlotStateMachine:
    """Slot 狀態機（區分擁有者與交換引擎兩種寫入者）"""

    OWNER_SETTABLE = {SlotStatus.BUSY, SlotStatus.SWAPPABLE}

    ENGINE_TRANSITIONS = {
        SlotStatus.SWAPPABLE: {SlotStatus.SWAP_PENDING},
        SlotStatus.SWAP_PENDING: {SlotStatus.BUSY, SlotStatus.SWAPPABLE},
        SlotStatus.BUSY: set(),
    }

    @classmethod
    def ensure_owner_change(cls, current: SlotStatus, target: SlotStatus) -> None:
        """
        擁有者切換狀態前的檢查

        異常：
            InvalidSlotStatus: 目標狀態不是 BUSY / SWAPPABLE
            SlotLocked: slot 正在交換協商中
        """
        if target not in cls.OWNER_SETTABLE:
            raise InvalidSlotStatus()
        if current == SlotStatus.SWAP_PENDING:
            raise SlotLocked("Cannot change status of pending event.")

    @classmethod
    def ensure_engine_change(cls, current: SlotStatus, target: SlotStatus) -> None:
        if target not in cls.ENGINE_TRANSITIONS.get(current, set()):
            raise InvalidStateTransition(
                f"Slot cannot go from {current.value} to {target.value}"
            )
