"""
signaling.core.exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~

信令服务的异常层级。

这些异常只在入站消息解码与分发之间流转，由 ``EventRouter`` 捕获并记录，
永远不会导致连接被关闭。
"""
from __future__ import annotations


class SignalingError(Exception):
    """信令服务异常基类。"""


class MalformedEventError(SignalingError):
    """入站消息格式错误：非 JSON、缺少字段或字段类型不符。"""

    def __init__(self, reason: str, kind: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind


class UnknownEventError(MalformedEventError):
    """入站消息的 ``kind`` 不在协议定义的范围内。"""

    def __init__(self, kind: str) -> None:
        super().__init__(f"未知的消息类型: {kind!r}", kind=kind)
