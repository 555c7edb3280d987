"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 内存持久化网关、假 WebSocket 传输、
以及运行完整 lifespan 的 ``TestClient``，测试无需真实 MongoDB。
"""
from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("WS_RATE_LIMIT_INTERVAL", "0")

from fastapi.testclient import TestClient  # noqa: E402
from starlette.websockets import WebSocketState  # noqa: E402

from chatrelay.core.rate_limit import limiter  # noqa: E402
from chatrelay.db.memory_gateway import MemoryGateway  # noqa: E402
from chatrelay.services.message_router import MessageRouter  # noqa: E402
from chatrelay.services.room_registry import RoomRegistry  # noqa: E402
from chatrelay.services.session import Session  # noqa: E402


class FakeTransport:
    """模拟 Starlette ``WebSocket`` 的写出端，记录已发送的信封。"""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset by peer")
        self.sent.append(json.loads(text))

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [env for env in self.sent if env["type"] == kind]

    @property
    def last(self) -> dict[str, Any]:
        return self.sent[-1]


class StalledTransport(FakeTransport):
    """连接仍处于 CONNECTED，但对端从不读取：每次写出都永远挂起。"""

    async def send_text(self, text: str) -> None:
        await asyncio.Event().wait()


def _make_session(
    username: str | None = None,
    fail: bool = False,
    *,
    stalled: bool = False,
    send_timeout: float = 5.0,
    max_pending: int = 256,
) -> Session:
    transport = StalledTransport() if stalled else FakeTransport(fail=fail)
    session = Session(transport, send_timeout=send_timeout, max_pending=max_pending)
    session.username = username
    return session


@pytest.fixture()
def make_session() -> Callable[..., Session]:
    """返回会话工厂：创建挂在 ``FakeTransport`` 上的会话。"""
    return _make_session


@pytest.fixture()
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture()
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture()
def router(gateway: MemoryGateway, registry: RoomRegistry) -> MessageRouter:
    return MessageRouter(gateway, registry)


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """运行完整 lifespan 的 TestClient（内存存储）。"""
    from chatrelay.main import app

    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
