"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類（對應 HTTP status）：
- ValidationFailed  -> 400
- PermissionDenied  -> 403
- NotFound          -> 404
- Conflict          -> 400（和 ValidationFailed 同一個 status code，
                           但 log 等級與類別名稱不同，方便追查並發競態）
"""


class SlotSwapperException(Exception):
    """所有業務異常的基類"""
    pass


class ValidationFailed(SlotSwapperException):
    """輸入或狀態不符合要求"""
    pass


class PermissionDenied(SlotSwapperException):
    """呼叫者沒有權限操作這筆資料"""
    pass


class NotFound(SlotSwapperException):
    """資料不存在（或在處理途中被刪除）"""
    pass


class Conflict(SlotSwapperException):
    """並發衝突：資料狀態已被其他請求改變"""
    pass


# ============ Slot 相關異常 ============

class SlotNotFound(NotFound):
    """Slot 不存在"""
    def __init__(self, slot_id=None, message="Event not found."):
        self.slot_id = slot_id
        super().__init__(message)


class NotSlotOwner(PermissionDenied):
    def __init__(self, message="Forbidden. You do not own this event."):
        super().__init__(message)


class SlotLocked(ValidationFailed):
    """Slot 正在交換協商中（SWAP_PENDING），不可編輯 / 刪除 / 切換狀態"""
    def __init__(self, message="Event is locked by a pending swap."):
        super().__init__(message)


class InvalidSlotStatus(ValidationFailed):
    """擁有者只能設定 BUSY 或 SWAPPABLE"""
    def __init__(self, message="Invalid status."):
        super().__init__(message)


class InvalidTimeRange(ValidationFailed):
    def __init__(self, message="startTime must be before endTime."):
        super().__init__(message)


class MissingFields(ValidationFailed):
    pass


# ============ Swap 提議相關異常 ============

class MissingSlotIds(ValidationFailed):
    def __init__(self, message="Both slot IDs are required."):
        super().__init__(message)


class SelfSwapNotAllowed(ValidationFailed):
    def __init__(self, message="You cannot swap with yourself."):
        super().__init__(message)


class SlotNotSwappable(ValidationFailed):
    def __init__(self, message="One or both slots are not currently swappable."):
        super().__init__(message)


class SwapRequestNotFound(NotFound):
    """Swap request 不存在"""
    def __init__(self, request_id=None):
        self.request_id = request_id
        super().__init__("Swap request not found.")


class NotRequestReceiver(PermissionDenied):
    """只有被請求 slot 的擁有者可以接受 / 拒絕"""
    def __init__(self, message="Forbidden. Only the receiver can respond to this request."):
        super().__init__(message)


class NotRequestRequester(PermissionDenied):
    """只有發起者可以撤回 / 移除請求"""
    def __init__(self, message="Forbidden. Only the requester can do this."):
        super().__init__(message)


# ============ 狀態轉換 / 並發衝突 ============

class RequestAlreadyHandled(Conflict):
    """請求已經不是 PENDING（被別的回應搶先處理）"""
    def __init__(self, message="Request already handled."):
        super().__init__(message)


class RequestStillPending(Conflict):
    """PENDING 的請求不能直接移除，必須先回應或撤回"""
    def __init__(self, message="Request is still pending. Withdraw it instead."):
        super().__init__(message)


class InvalidStateTransition(Conflict):
    """非法的狀態轉換"""
    pass
