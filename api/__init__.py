"""
API 層：FastAPI routers

- slots：擁有者管理自己的 slot
- swaps：交換協商
- websocket：推播通道
"""
