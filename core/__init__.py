"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中定義 slot 與 swap request 的合法轉換
- Manager：SwapManager（交換協商）、SlotManager（擁有者操作）
- Locks：行級鎖與 compare-and-set 寫入
- Connection Registry：WebSocket 連線表
"""
