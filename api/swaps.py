"""
Swap API Endpoints

職責：
1. 市場（其他人可交換的 slot）
2. 提議 / 回應 / 撤回 / 移除交換請求
3. 查詢收到與送出的請求

所有業務邏輯集中在 SwapManager；這裡只負責：
- 把業務異常轉成 HTTP status
- commit 成功後，用 BackgroundTasks 排程推播
"""
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from auth import get_current_user
from database import get_db
from models import User, SwapRequestStatus
from schemas import (
    SwappableSlotResponse,
    SwapRequestCreate,
    SwapRequestCreated,
    SwapResponseSubmit,
    IncomingRequestResponse,
    OutgoingRequestResponse,
    MessageResponse
)
from core.swap_manager import SwapManager
from core.exceptions import ValidationFailed, PermissionDenied, NotFound, Conflict
from services.notification_service import (
    NotificationDispatcher,
    get_dispatcher,
    schedule_notices
)

router = APIRouter(prefix="/api/swap", tags=["swap"])
logger = logging.getLogger(__name__)


@router.get("/swappable-slots", response_model=List[SwappableSlotResponse])
def get_swappable_slots(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    市場：其他使用者標記為 SWAPPABLE 的 slot

    返回：
        slot 列表，每筆附上擁有者顯示名稱（ownerName）
    """
    try:
        return SwapManager.list_swappable_slots(db, current_user.id)
    except Exception as e:
        logger.error(f"Failed to fetch swappable slots: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error fetching swappable slots.")


@router.post(
    "/request",
    response_model=SwapRequestCreated,
    status_code=status.HTTP_201_CREATED
)
def create_swap_request(
    payload: SwapRequestCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_dispatcher)
):
    """
    提議交換

    流程：
    1. SwapManager.create_request()（transaction 內驗證 + 鎖定 + 建立）
    2. commit 後通知對方（NEW_REQUEST）並廣播市場更新

    失敗：
        400 缺少 id / 和自己交換 / slot 不可交換
        403 offered slot 不是自己的
        404 slot 不存在
    """
    try:
        swap_request, notices = SwapManager.create_request(
            db,
            current_user.id,
            payload.offered_slot_id,
            payload.target_slot_id
        )
        schedule_notices(background_tasks, notices, notifier)

        return SwapRequestCreated(
            message="Swap request submitted successfully!",
            swap_request_id=swap_request.id,
            status=SwapRequestStatus.PENDING
        )

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (ValidationFailed, Conflict) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create swap request: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error requesting swap.")


@router.post("/response/{request_id}", response_model=MessageResponse)
def respond_to_swap_request(
    request_id: int,
    payload: SwapResponseSubmit,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_dispatcher)
):
    """
    接受或拒絕收到的請求

    前置條件：
    - 請求存在且為 PENDING
    - 呼叫者是 receiver slot 的擁有者

    失敗：
        400 acceptance 沒給 / 請求已處理過
        403 不是 receiver
        404 請求或 slot 不存在
    """
    if payload.acceptance is None:
        raise HTTPException(status_code=400, detail="Acceptance must be true or false.")

    try:
        _, notices = SwapManager.respond(
            db, current_user.id, request_id, payload.acceptance
        )
        schedule_notices(background_tasks, notices, notifier)

        if payload.acceptance:
            return MessageResponse(message="Swap accepted! Your calendars have been updated.")
        return MessageResponse(message="Swap request rejected.")

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (ValidationFailed, Conflict) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error in swap response: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error responding to swap.")


@router.get("/requests/incoming", response_model=List[IncomingRequestResponse])
def get_incoming_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """別人提給我、還在 PENDING 的請求"""
    try:
        return SwapManager.list_incoming(db, current_user.id)
    except Exception as e:
        logger.error(f"Failed to fetch incoming requests: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error fetching incoming requests.")


@router.get("/requests/outgoing", response_model=List[OutgoingRequestResponse])
def get_outgoing_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """我送出的所有請求（含已結案）"""
    try:
        return SwapManager.list_outgoing(db, current_user.id)
    except Exception as e:
        logger.error(f"Failed to fetch outgoing requests: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error fetching outgoing requests.")


@router.post("/request/{request_id}/withdraw", response_model=MessageResponse)
def withdraw_swap_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_dispatcher)
):
    """
    撤回自己送出、仍在 PENDING 的請求（兩個 slot 回到 SWAPPABLE）
    """
    try:
        notices = SwapManager.withdraw(db, current_user.id, request_id)
        schedule_notices(background_tasks, notices, notifier)
        return MessageResponse(message="Request withdrawn.")

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (ValidationFailed, Conflict) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to withdraw swap request: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error withdrawing request.")


@router.delete("/request/{request_id}", response_model=MessageResponse)
def dismiss_swap_request(
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    移除已結案的請求（只有發起者可以）

    PENDING 的請求會被拒絕（400），請改用 withdraw
    """
    try:
        SwapManager.dismiss(db, current_user.id, request_id)
        return MessageResponse(message="Request dismissed.")

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (ValidationFailed, Conflict) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to dismiss swap request: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error dismissing request.")
