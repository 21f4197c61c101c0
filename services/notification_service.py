"""
通知服務：把交換引擎產生的事件推給在線使用者

設計：
- 引擎只回傳 Notice 列表（要推什麼、推給誰），不直接送
- API 層在 transaction commit 之後，用 BackgroundTasks 呼叫 dispatch()
- 推送是 best-effort：對方不在線、送出失敗都只記 log，不影響已 commit 的狀態
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
import logging

from core.connection_registry import ConnectionRegistry, registry

logger = logging.getLogger(__name__)

NEW_REQUEST = "NEW_REQUEST"
REQUEST_RESPONSE = "REQUEST_RESPONSE"
REQUEST_WITHDRAWN = "REQUEST_WITHDRAWN"
MARKETPLACE_UPDATE = "MARKETPLACE_UPDATE"


@dataclass
class Notice:
    """
    一則待送出的通知

    user_id 有值：只送給該使用者
    user_id 為 None：廣播給所有人（排除 exclude_user_id）
    """
    payload: dict = field(default_factory=dict)
    user_id: Optional[int] = None
    exclude_user_id: Optional[int] = None

    @classmethod
    def to_user(cls, user_id: int, event_type: str, **fields) -> "Notice":
        return cls(payload={"type": event_type, **fields}, user_id=user_id)

    @classmethod
    def broadcast(cls, event_type: str, exclude_user_id: Optional[int] = None, **fields) -> "Notice":
        return cls(payload={"type": event_type, **fields}, exclude_user_id=exclude_user_id)

    @property
    def is_broadcast(self) -> bool:
        return self.user_id is None


class NotificationDispatcher:
    """只暴露 deliver-to-user / broadcast-except 兩個動作"""

    def __init__(self, connections: ConnectionRegistry):
        self._connections = connections

    async def notify_user(self, user_id: int, payload: dict) -> None:
        try:
            await self._connections.send_to_user(user_id, payload)
        except Exception as e:
            logger.warning(f"Notification {payload.get('type')} to user {user_id} failed: {e}")

    async def broadcast_except(self, payload: dict, exclude_user_id: Optional[int] = None) -> None:
        try:
            await self._connections.broadcast_except(payload, exclude_user_id)
        except Exception as e:
            logger.warning(f"Broadcast {payload.get('type')} failed: {e}")

    async def dispatch(self, notices: Iterable[Notice]) -> None:
        """依序送出所有通知；任何一則失敗都不影響其他"""
        for notice in notices:
            if notice.is_broadcast:
                await self.broadcast_except(notice.payload, notice.exclude_user_id)
            else:
                await self.notify_user(notice.user_id, notice.payload)


dispatcher = NotificationDispatcher(registry)


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency（測試可以 override）"""
    return dispatcher


def schedule_notices(background_tasks, notices: List[Notice], notifier: NotificationDispatcher) -> None:
    """
    排程在 response 送出後才推送

    BackgroundTasks 在 endpoint 回傳之後才執行，
    而 endpoint 回傳時 @transactional 已經 commit
    """
    if notices:
        background_tasks.add_task(notifier.dispatch, list(notices))
