"""
服務層

這個 package 包含不負責狀態轉換的邏輯：
- NamingService：使用者顯示名稱
- NotificationService：commit 之後的 best-effort 推播
"""
