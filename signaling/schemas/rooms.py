"""
signaling.schemas.rooms
~~~~~~~~~~~~~~~~~~~~~~~

房间管理接口的 Pydantic 响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class RoomInfoData(BaseModel):
    """房间摘要信息（只含计数，不暴露昵称）。"""

    room: str = Field(..., description="房间名")
    host: str | None = Field(default=None, description="主持人连接 ID，未入会时为空")
    participants: int = Field(..., description="已入会人数")
    waiting: int = Field(..., description="等候队列人数")


class EndRoomData(BaseModel):
    """``/endRoom`` 应答。"""

    success: bool = Field(default=True, description="请求已受理")


class HealthData(BaseModel):
    """``/health`` 应答。"""

    ok: bool = Field(default=True, description="服务存活")
