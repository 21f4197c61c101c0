"""
Connection Registry：管理 WebSocket 連線

職責：
1. user_id -> 最多一條有效連線
2. 連線 / 斷線時的增刪（asyncio.Lock 保護）
3. 對單一使用者送訊息、對「除了某人以外的所有人」廣播

交換引擎不會直接碰這個物件，只會透過 NotificationDispatcher 使用
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """WebSocket 連線註冊表"""

    def __init__(self):
        self._connections: Dict[int, Any] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, websocket) -> None:
        """
        註冊連線（同一個使用者重複連線時，新的取代舊的）

        注意：
            呼叫前 websocket 必須已經 accept
        """
        async with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = websocket

        if previous is not None and previous is not websocket:
            logger.info(f"User {user_id} reconnected, closing previous channel")
            try:
                await previous.close()
            except Exception as e:
                logger.debug(f"Closing stale channel for user {user_id} failed: {e}")

        logger.info(f"User {user_id} connected ({len(self._connections)} online)")

    async def disconnect(self, user_id: int, websocket=None) -> None:
        """
        移除連線

        參數：
            websocket: 若有給，只有在它仍是目前註冊的連線時才移除，
                       避免舊連線的斷線事件把新連線踢掉
        """
        async with self._lock:
            current = self._connections.get(user_id)
            if current is None:
                return
            if websocket is not None and current is not websocket:
                return
            del self._connections[user_id]

        logger.info(f"User {user_id} disconnected")

    async def get(self, user_id: int) -> Optional[Any]:
        async with self._lock:
            return self._connections.get(user_id)

    async def snapshot(self) -> List[Tuple[int, Any]]:
        async with self._lock:
            return list(self._connections.items())

    def is_connected(self, user_id: int) -> bool:
        """
        不加鎖的快照，結果可能馬上過時

        只給同步程式輪詢用（例如等連線註冊完成）；
        要依結果送訊息請用 get() / send_to_user()
        """
        return user_id in self._connections

    async def send_to_user(self, user_id: int, message: dict) -> bool:
        """
        送訊息給單一使用者

        返回：
            True 如果有送出，False 如果對方不在線或送出失敗
        """
        websocket = await self.get(user_id)
        if websocket is None:
            logger.debug(f"User {user_id} not connected, dropping {message.get('type')}")
            return False

        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"Failed to deliver {message.get('type')} to user {user_id}: {e}")
            await self.disconnect(user_id, websocket)
            return False

    async def broadcast_except(self, message: dict, exclude_user_id: Optional[int] = None) -> int:
        """
        廣播給所有在線使用者（排除 exclude_user_id）

        返回：
            成功送出的數量
        """
        delivered = 0
        for user_id, _ in await self.snapshot():
            if user_id == exclude_user_id:
                continue
            if await self.send_to_user(user_id, message):
                delivered += 1
        return delivered


registry = ConnectionRegistry()
