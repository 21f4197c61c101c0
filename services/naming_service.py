"""
命名服務：產生使用者的顯示名稱

純計算邏輯，不涉及狀態轉換
"""
from typing import Optional

from models import User


def display_name(user: Optional[User]) -> Optional[str]:
    """
    使用者顯示名稱

    規則：
    - 有 name（且不是空字串）就用 name
    - 否則用 email 的 @ 前面那段

    範例：
        User(name="Alice", email="a@x.com") -> "Alice"
        User(name="", email="bob@x.com")    -> "bob"
    """
    if user is None:
        return None
    if user.name and user.name.strip():
        return user.name
    return (user.email or "").split("@", 1)[0]
