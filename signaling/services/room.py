"""
signaling.services.room
~~~~~~~~~~~~~~~~~~~~~~~

会议房间领域模型 —— 一个房间的全部权威状态。

每个 ``MeetingRoom`` 持有主持人、已入会成员和等候队列，以及保护这些状态的
``asyncio.Lock``。所有状态转换都是同步的纯函数式方法：修改状态并返回一组
``Effect``（待发送的下行消息），由调用方在释放锁之后再统一投递。

调用方（``RoomRegistry.mutate``）负责持锁；本模块不做任何 I/O。
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import NamedTuple

from signaling.core.logging import get_logger
from signaling.schemas.events import OutboundEvent, WaitingUserData
from signaling.schemas.rooms import RoomInfoData

logger = get_logger(__name__)

DEFAULT_SENDER_NAME: str = "User"


class Effect(NamedTuple):
    """在房间锁内计算、锁外投递的一条下行消息。"""

    target: str
    event: OutboundEvent


@dataclass
class Member:
    """已入会成员。"""

    display_name: str
    is_host: bool = False


@dataclass
class WaitingEntry:
    """等候队列中的访客。"""

    conn_id: str
    display_name: str


class MeetingRoom:
    """一个会议房间。

    Attributes:
        name: 房间名（不透明字符串）。
        host: 主持人连接 ID，未设置时为 ``None``。
        admitted: 已入会成员，按入会顺序迭代。
        waiting: 等候队列，FIFO，同一连接最多出现一次。
        closed: 房间已结束，注册表会在释放锁时将其移除。
        lock: 房间级互斥锁。
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.host: str | None = None
        self.admitted: dict[str, Member] = {}
        self.waiting: list[WaitingEntry] = []
        self.closed: bool = False
        self.lock = asyncio.Lock()

    # ── 查询 ──────────────────────────────────────────────────────────

    @property
    def is_empty(self) -> bool:
        """没有成员、没有等候者、也没有主持人。"""
        return not self.admitted and not self.waiting and self.host is None

    def has_member(self, conn_id: str) -> bool:
        return conn_id in self.admitted

    def is_waiting(self, conn_id: str) -> bool:
        return any(entry.conn_id == conn_id for entry in self.waiting)

    def waiting_snapshot(self) -> list[WaitingUserData]:
        return [WaitingUserData(id=w.conn_id, name=w.display_name) for w in self.waiting]

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            room=self.name,
            host=self.host,
            participants=len(self.admitted),
            waiting=len(self.waiting),
        )

    # ── 状态转换 ──────────────────────────────────────────────────────

    def join_request(self, conn_id: str, display_name: str) -> list[Effect]:
        """访客申请入会，进入等候队列。

        同一连接重复申请时原地更新昵称，保留其在队列中的位置。
        已入会的连接再次申请会被忽略。
        """
        if conn_id in self.admitted:
            logger.debug("已入会连接重复申请，忽略 | room=%s", self.name)
            return []

        for entry in self.waiting:
            if entry.conn_id == conn_id:
                entry.display_name = display_name
                break
        else:
            self.waiting.append(WaitingEntry(conn_id=conn_id, display_name=display_name))

        logger.info("访客进入等候队列 | room=%s | 等候: %d", self.name, len(self.waiting))
        return self._notify_host()

    def join_room(self, conn_id: str, display_name: str, as_host: bool) -> list[Effect]:
        """正式入会（主持人或已获批访客）。

        已有主持人时，新的主持人声明后到先得，原主持人降级为普通成员。
        """
        if as_host and self.host is not None and self.host != conn_id:
            previous = self.admitted.get(self.host)
            if previous is not None:
                previous.is_host = False
            logger.info("主持人被替换 | room=%s", self.name)
        if as_host:
            self.host = conn_id
        elif self.host == conn_id:
            # 主持人以访客身份重新入会即放弃主持人身份
            self.host = None

        self.admitted[conn_id] = Member(display_name=display_name, is_host=as_host)
        self.waiting = [w for w in self.waiting if w.conn_id != conn_id]

        peer_ids = [peer for peer in self.admitted if peer != conn_id]
        effects = [Effect(conn_id, OutboundEvent.peers(peer_ids))]

        joined = OutboundEvent.peer_joined(conn_id, display_name, as_host)
        effects.extend(Effect(peer, joined) for peer in peer_ids)
        effects.extend(self._notify_host())

        logger.info(
            "成员入会 | room=%s | host=%s | 在会: %d", self.name, as_host, len(self.admitted),
        )
        return effects

    def approve_all(self, caller_id: str) -> list[Effect]:
        """主持人批准等候队列中的所有人。非主持人调用静默忽略。

        批准不会直接让访客入会，访客收到 ``approved`` 后需再次发送 ``join-room``。
        """
        if self.host is None or caller_id != self.host:
            logger.info("非主持人尝试批准，忽略 | room=%s", self.name)
            return []

        approved = OutboundEvent.approved(self.name)
        effects = [Effect(entry.conn_id, approved) for entry in self.waiting]
        logger.info("主持人批准全部等候者 | room=%s | 人数: %d", self.name, len(self.waiting))
        self.waiting.clear()
        effects.append(Effect(self.host, OutboundEvent.waiting_user([])))
        return effects

    def chat(self, conn_id: str, message: str, *, allow_unadmitted: bool = False) -> list[Effect]:
        """向全体已入会成员（包括发送者）广播聊天消息。"""
        name = self._sender_name(conn_id, allow_unadmitted)
        if name is None:
            return []
        return self._broadcast(OutboundEvent.chat(name, message))

    def emoji(self, conn_id: str, emoji: str, *, allow_unadmitted: bool = False) -> list[Effect]:
        """向全体已入会成员（包括发送者）广播表情反应。"""
        name = self._sender_name(conn_id, allow_unadmitted)
        if name is None:
            return []
        return self._broadcast(OutboundEvent.emoji(name, emoji))

    def leave(self, conn_id: str) -> list[Effect]:
        """主动离开与断线共用的清理逻辑，可重复调用。

        主持人离开时结束整场会议；房间变空时标记为关闭；
        房间保留且有主持人时，总是把最新的等候列表推给主持人。
        """
        self.waiting = [w for w in self.waiting if w.conn_id != conn_id]

        effects: list[Effect] = []
        if conn_id in self.admitted:
            was_host = self.host == conn_id
            del self.admitted[conn_id]

            left = OutboundEvent.peer_left(conn_id)
            effects.extend(Effect(peer, left) for peer in self.admitted)

            if was_host:
                logger.info("主持人离开，会议结束 | room=%s", self.name)
                effects.extend(self._end())
                return effects

        if self.is_empty:
            self.closed = True
            return effects

        effects.extend(self._notify_host())
        return effects

    def end(self) -> list[Effect]:
        """管理员强制结束会议，可重复调用。"""
        if self.closed:
            return []
        logger.info("会议被管理员结束 | room=%s", self.name)
        return self._end()

    # ── 内部工具 ──────────────────────────────────────────────────────

    def _end(self) -> list[Effect]:
        ended = OutboundEvent.meeting_ended()
        targets = list(self.admitted) + [w.conn_id for w in self.waiting]
        self.admitted.clear()
        self.waiting.clear()
        self.host = None
        self.closed = True
        return [Effect(target, ended) for target in targets]

    def _notify_host(self) -> list[Effect]:
        if self.host is None:
            return []
        return [Effect(self.host, OutboundEvent.waiting_user(self.waiting_snapshot()))]

    def _broadcast(self, event: OutboundEvent) -> list[Effect]:
        return [Effect(peer, event) for peer in self.admitted]

    def _sender_name(self, conn_id: str, allow_unadmitted: bool) -> str | None:
        member = self.admitted.get(conn_id)
        if member is not None:
            return member.display_name
        if allow_unadmitted:
            return DEFAULT_SENDER_NAME
        logger.debug("未入会连接发送房间消息，丢弃 | room=%s", self.name)
        return None
