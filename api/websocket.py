"""
WebSocket：推播通道

連線方式：ws://<host>/ws?token=<jwt>
- token 無效：以 1008 關閉
- token 有效：註冊到 ConnectionRegistry，之後只收伺服器推播
  （NEW_REQUEST / REQUEST_RESPONSE / REQUEST_WITHDRAWN / MARKETPLACE_UPDATE）

客戶端送來的訊息一律忽略，只用來偵測斷線
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
import logging

from auth import user_from_token
from database import get_db
from core.connection_registry import registry

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def notification_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    user = await run_in_threadpool(user_from_token, db, token)
    user_id = user.id if user is not None else None
    # 驗證完就不需要 DB，連線可能維持很久
    db.close()

    if user_id is None:
        logger.info("Rejected websocket connection with invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await registry.connect(user_id, websocket)

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await registry.disconnect(user_id, websocket)
