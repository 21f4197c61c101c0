"""
Request / Response schemas

JSON 欄位一律 camelCase（前端沿用既有格式），Python 端用 snake_case
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models import SlotStatus, SwapRequestStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


# ============ Slot ============

class SlotWrite(CamelModel):
    """建立 / 編輯 slot（欄位檢查交給 SlotManager，錯誤訊息才會一致）"""
    title: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class SlotStatusUpdate(CamelModel):
    status: Optional[str] = None


class SlotResponse(CamelModel):
    id: int
    title: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    user_id: int


class SwappableSlotResponse(SlotResponse):
    owner_name: Optional[str] = None


class SlotStatusResponse(CamelModel):
    message: str
    new_status: SlotStatus


# ============ Swap ============

class SwapRequestCreate(CamelModel):
    offered_slot_id: Optional[int] = None
    target_slot_id: Optional[int] = None


class SwapResponseSubmit(CamelModel):
    acceptance: Optional[bool] = None


class SwapRequestCreated(CamelModel):
    message: str
    swap_request_id: int
    status: SwapRequestStatus


class IncomingRequestResponse(CamelModel):
    swap_request_id: int
    requester_slot_id: int
    requester_slot_title: str
    requester_slot_start_time: datetime
    requester_slot_end_time: datetime
    requester_name: Optional[str] = None


class OutgoingRequestResponse(CamelModel):
    swap_request_id: int
    status: SwapRequestStatus
    receiver_slot_id: int
    receiver_slot_title: str
    receiver_slot_start_time: datetime
    receiver_slot_end_time: datetime
    receiver_name: Optional[str] = None


class MessageResponse(CamelModel):
    message: str
