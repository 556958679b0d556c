"""
signaling.services.registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 进程内房间名到 ``MeetingRoom`` 的映射，管理所有房间的生命周期。

注册表自身的锁只保护映射的插入 / 删除；房间状态由各房间自己的锁串行化。
``mutate()`` 是唯一的写入口：

  1. 查找（或创建）房间
  2. 获取房间锁，执行状态转换，得到 ``Effect`` 列表
  3. 房间若已关闭则从映射中移除
  4. 释放锁，把 ``Effect`` 交还调用方投递

在 lifespan 中显式创建并挂载于 ``app.state``，不使用模块级全局变量，
因此测试中可以并存多个互不干扰的实例。
"""
from __future__ import annotations

import threading
from collections.abc import Callable

from signaling.core.logging import get_logger
from signaling.schemas.rooms import RoomInfoData
from signaling.services.room import Effect, MeetingRoom

logger = get_logger(__name__)

RoomOperation = Callable[[MeetingRoom], list[Effect]]


class RoomRegistry:
    """房间注册表。

    - ``get_or_create(name)`` → 获取 / 创建房间
    - ``get(name)``           → 获取房间，不存在返回 ``None``
    - ``destroy(name)``       → 移除房间（幂等）
    - ``mutate(name, op)``    → 在房间锁内执行状态转换
    - ``end(name)``           → 管理员强制结束房间
    """

    def __init__(self) -> None:
        self._rooms: dict[str, MeetingRoom] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, name: object) -> bool:
        return name in self._rooms

    def get_or_create(self, name: str) -> MeetingRoom:
        """获取指定房间（不存在则自动创建）。"""
        with self._lock:
            room = self._rooms.get(name)
            if room is None:
                room = MeetingRoom(name)
                self._rooms[name] = room
                logger.info("房间已创建 | room=%s | 房间总数: %d", name, len(self._rooms))
            return room

    def get(self, name: str) -> MeetingRoom | None:
        with self._lock:
            return self._rooms.get(name)

    def destroy(self, name: str) -> None:
        """移除房间。重复调用无副作用。"""
        with self._lock:
            room = self._rooms.pop(name, None)
        if room is not None:
            room.closed = True
            logger.info("房间已销毁 | room=%s", name)

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有活跃房间的摘要信息。"""
        with self._lock:
            rooms = list(self._rooms.values())
        return [room.info() for room in rooms]

    async def mutate(self, name: str, op: RoomOperation, *, create: bool = False) -> list[Effect]:
        """在房间锁内执行 ``op`` 并返回需要投递的消息。

        ``create=False`` 时房间不存在即静默返回空列表。
        拿到锁时若房间已被并发关闭：允许创建则换一个新房间重试，否则放弃。

        Args:
            name: 房间名。
            op: 接收 ``MeetingRoom``、返回 ``Effect`` 列表的同步函数。
            create: 房间不存在时是否创建。
        """
        while True:
            room = self.get_or_create(name) if create else self.get(name)
            if room is None:
                return []
            async with room.lock:
                if room.closed:
                    self._discard(room)
                    if create:
                        continue
                    return []
                effects = op(room)
                if room.closed or room.is_empty:
                    room.closed = True
                    self._discard(room)
                return effects

    async def end(self, name: str) -> list[Effect]:
        """管理员强制结束房间，房间不存在时返回空列表。"""
        return await self.mutate(name, MeetingRoom.end)

    def _discard(self, room: MeetingRoom) -> None:
        # 只移除同一个实例，避免误删同名的新房间
        with self._lock:
            if self._rooms.get(room.name) is not room:
                return
            del self._rooms[room.name]
            remaining = len(self._rooms)
        logger.info("房间已销毁 | room=%s | 房间总数: %d", room.name, remaining)
