"""
signaling.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 信令协议的 Pydantic 模型。

每一帧都是 JSON 对象 ``{"kind": str, "payload": any}``，
``payload`` 的结构由 ``kind`` 决定。线上字段名保持驼峰（``userName``、``isHost``），
Python 侧属性使用下划线命名并通过 alias 映射。

入站（客户端 → 服务端）:
  - ``join-request``  ``{room, userName}``
  - ``join-room``     ``{room, userName, host, token?}``
  - ``approve-all``   ``room``
  - ``signal``        ``{to, data}``
  - ``send-chat``     ``{room, message}``
  - ``send-emoji``    ``{room, emoji}``
  - ``leave-room``    ``room``

出站（服务端 → 客户端）见 ``OutboundEvent`` 的各个构造方法。
"""
from __future__ import annotations

import json
from typing import Annotated, Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError

from signaling.core.exceptions import MalformedEventError, UnknownEventError

RoomName = Annotated[str, StringConstraints(min_length=1)]

InboundKind = Literal[
    "join-request",
    "join-room",
    "approve-all",
    "signal",
    "send-chat",
    "send-emoji",
    "leave-room",
]


# ── 入站 payload ──────────────────────────────────────────────────────

class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinRequestPayload(_WireModel):
    """访客申请进入等候队列。"""

    room: RoomName = Field(..., description="房间名")
    user_name: str | None = Field(default=None, alias="userName", description="自报昵称")


class JoinRoomPayload(_WireModel):
    """主持人或已获批访客正式入会。"""

    room: RoomName = Field(..., description="房间名")
    user_name: str | None = Field(default=None, alias="userName", description="自报昵称")
    host: bool = Field(default=False, description="是否以主持人身份入会（自报）")
    token: str | None = Field(default=None, description="主持人口令，仅在配置了 HOST_SECRET 时校验")


class SignalPayload(_WireModel):
    """点对点转发的 WebRTC 信令（SDP / ICE），内容不做解析。"""

    to: str = Field(..., min_length=1, description="目标连接 ID")
    data: Any = Field(..., description="不透明的信令数据")


class ChatPayload(_WireModel):
    """房间内聊天消息。"""

    room: RoomName = Field(..., description="房间名")
    message: str = Field(..., description="消息文本")


class EmojiPayload(_WireModel):
    """房间内表情反应。"""

    room: RoomName = Field(..., description="房间名")
    emoji: str = Field(..., description="表情")


_PAYLOAD_ADAPTERS: dict[str, TypeAdapter[Any]] = {
    "join-request": TypeAdapter(JoinRequestPayload),
    "join-room": TypeAdapter(JoinRoomPayload),
    "approve-all": TypeAdapter(RoomName),
    "signal": TypeAdapter(SignalPayload),
    "send-chat": TypeAdapter(ChatPayload),
    "send-emoji": TypeAdapter(EmojiPayload),
    "leave-room": TypeAdapter(RoomName),
}


class InboundEvent(NamedTuple):
    """解码后的入站事件。"""

    kind: str
    payload: Any


def parse_event(raw: str | bytes) -> InboundEvent:
    """把一帧原始文本解码为 ``InboundEvent``。

    Raises:
        MalformedEventError: 非 JSON、非对象、缺少 ``kind`` 或 payload 校验失败。
        UnknownEventError: ``kind`` 不在协议范围内。
    """
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"无法解析 JSON: {e}") from e

    if not isinstance(frame, dict):
        raise MalformedEventError("消息帧必须是 JSON 对象")

    kind = frame.get("kind")
    if not isinstance(kind, str) or not kind:
        raise MalformedEventError("缺少 kind 字段")

    adapter = _PAYLOAD_ADAPTERS.get(kind)
    if adapter is None:
        raise UnknownEventError(kind)

    try:
        payload = adapter.validate_python(frame.get("payload"))
    except ValidationError as e:
        raise MalformedEventError(
            f"payload 校验失败: {e.error_count()} 处错误", kind=kind,
        ) from e
    return InboundEvent(kind=kind, payload=payload)


# ── 出站 payload ──────────────────────────────────────────────────────

class WaitingUserData(_WireModel):
    """等候队列中的一位访客。"""

    id: str
    name: str


class PeerJoinedData(_WireModel):
    id: str
    user_name: str = Field(..., alias="userName")
    is_host: bool = Field(..., alias="isHost")


class SignalData(_WireModel):
    from_: str = Field(..., alias="from")
    data: Any


class OutboundEvent(BaseModel):
    """服务端下发的一帧消息。

    同一个实例会被广播给多个连接，因此视为不可变。
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    payload: Any = None

    def to_json(self) -> str:
        """序列化为线上 JSON 文本。"""
        return json.dumps({"kind": self.kind, "payload": self.payload}, ensure_ascii=False)

    # ── 构造方法 ──────────────────────────────────────────────────────

    @classmethod
    def connected(cls, conn_id: str) -> OutboundEvent:
        """握手：告知客户端自己的连接 ID。"""
        return cls(kind="connected", payload={"id": conn_id})

    @classmethod
    def waiting_user(cls, waiting: list[WaitingUserData]) -> OutboundEvent:
        return cls(kind="waiting-user", payload=[w.model_dump(by_alias=True) for w in waiting])

    @classmethod
    def approved(cls, room: str) -> OutboundEvent:
        return cls(kind="approved", payload=room)

    @classmethod
    def peers(cls, peer_ids: list[str]) -> OutboundEvent:
        return cls(kind="peers", payload=list(peer_ids))

    @classmethod
    def peer_joined(cls, conn_id: str, user_name: str, is_host: bool) -> OutboundEvent:
        data = PeerJoinedData(id=conn_id, user_name=user_name, is_host=is_host)
        return cls(kind="peer-joined", payload=data.model_dump(by_alias=True))

    @classmethod
    def peer_left(cls, conn_id: str) -> OutboundEvent:
        return cls(kind="peer-left", payload={"id": conn_id})

    @classmethod
    def signal(cls, from_id: str, data: Any) -> OutboundEvent:
        return cls(kind="signal", payload=SignalData(from_=from_id, data=data).model_dump(by_alias=True))

    @classmethod
    def chat(cls, name: str, message: str) -> OutboundEvent:
        return cls(kind="chat", payload={"name": name, "message": message})

    @classmethod
    def emoji(cls, name: str, emoji: str) -> OutboundEvent:
        return cls(kind="emoji", payload={"name": name, "emoji": emoji})

    @classmethod
    def meeting_ended(cls) -> OutboundEvent:
        return cls(kind="meeting-ended")
