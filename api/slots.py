"""
Slot（Event）API Endpoints

擁有者管理自己的 slot：建立、列出、切換 BUSY / SWAPPABLE、編輯、刪除
SWAP_PENDING 的 slot 一律不可修改（由 SlotManager 把關）
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from auth import get_current_user
from database import get_db
from models import User
from schemas import (
    SlotWrite,
    SlotStatusUpdate,
    SlotResponse,
    SlotStatusResponse,
    MessageResponse
)
from core.slot_manager import SlotManager
from core.exceptions import ValidationFailed, PermissionDenied, NotFound

router = APIRouter(prefix="/api/events", tags=["events"])
logger = logging.getLogger(__name__)


@router.post("", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: SlotWrite,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return SlotManager.create_slot(
            db, current_user.id, payload.title, payload.start_time, payload.end_time
        )
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create event: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error creating event.")


@router.get("/my-events", response_model=List[SlotResponse])
def get_my_events(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return SlotManager.list_user_slots(db, current_user.id)
    except Exception as e:
        logger.error(f"Failed to fetch events: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error fetching events.")


@router.patch("/{event_id}/status", response_model=SlotStatusResponse)
def update_event_status(
    event_id: int,
    payload: SlotStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    切換 BUSY / SWAPPABLE

    失敗：
        400 狀態不合法 / slot 正在協商中
        403 不是擁有者
        404 slot 不存在
    """
    try:
        slot = SlotManager.set_status(db, current_user.id, event_id, payload.status)
        return SlotStatusResponse(
            message="Event status updated successfully.",
            new_status=slot.status
        )

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update event status: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error updating event status.")


@router.put("/{event_id}", response_model=MessageResponse)
def update_event(
    event_id: int,
    payload: SlotWrite,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        SlotManager.update_slot(
            db, current_user.id, event_id, payload.title, payload.start_time, payload.end_time
        )
        return MessageResponse(message="Event updated successfully.")

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update event: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error updating event.")


@router.delete("/{event_id}", response_model=MessageResponse)
def delete_event(
    event_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        SlotManager.delete_slot(db, current_user.id, event_id)
        return MessageResponse(message="Event deleted successfully.")

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValidationFailed as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to delete event: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Server error deleting event.")
