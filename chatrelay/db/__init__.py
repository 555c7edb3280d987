"""
chatrelay.db
~~~~~~~~~~~~

持久化层入口。根据 ``settings.STORE_BACKEND`` 构造对应的持久化网关:

  - ``mongo``  → ``MongoGateway``（motor 异步驱动，启动时 ping 校验连接）
  - ``memory`` → ``MemoryGateway``（进程内存，重启即丢失，用于调试与测试）
"""
from __future__ import annotations

from chatrelay.core.config import Settings
from chatrelay.core.logging import get_logger
from chatrelay.db.gateway import ChatMessage, PersistenceGateway
from chatrelay.db.memory_gateway import MemoryGateway
from chatrelay.db.mongo_gateway import MongoGateway

logger = get_logger(__name__)

__all__ = [
    "ChatMessage",
    "MemoryGateway",
    "MongoGateway",
    "PersistenceGateway",
    "create_gateway",
]


async def create_gateway(settings: Settings) -> PersistenceGateway:
    """按配置创建持久化网关。应在 lifespan startup 中调用一次。"""
    if settings.STORE_BACKEND == "memory":
        logger.warning("使用内存存储，进程退出后聊天记录将丢失")
        return MemoryGateway()
    return await MongoGateway.connect(settings.MONGO_URI, settings.MONGO_DB_NAME)
