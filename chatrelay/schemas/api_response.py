"""
chatrelay.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间诊断接口（``/api/rooms*``）与全局异常处理器共用的应答体。

成功时由路由的 ``response_model`` 序列化，HTTP 状态码固定为 200；
失败时通过 ``to_response()`` 直接返回，HTTP 状态码取 ``code``
（房间不存在 → 404，未捕获异常 → 500）。WebSocket 中继不使用此结构，
其错误以 ``{"type": "error", ...}`` 信封下发，见 ``chatrelay.schemas.envelopes``。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """REST 应答体 ``{"code": ..., "data": ..., "msg": ...}``。"""

    code: int = Field(default=200, description="业务状态码，失败时与 HTTP 状态码一致")
    data: T = Field(..., description="业务数据，失败时为 null")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def not_found(cls, what: str) -> JSONResponse:
        """404 应答，例如房间既不在线也未持久化。"""
        return cls.fail(msg=f"{what}不存在", code=404).to_response()

    def to_response(self) -> JSONResponse:
        """以 ``code`` 作为 HTTP 状态码直接返回，绕过路由的 ``response_model``。"""
        return JSONResponse(status_code=self.code, content=self.model_dump(mode="json"))
