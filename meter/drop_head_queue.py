#  丢头队列封装 DropHeadQueue

from __future__ import annotations
import asyncio
import contextlib
from typing import Generic, TypeVar

T = TypeVar("T")


class DropHeadQueue(Generic[T]):
    """
    asyncio.Queue 的轻量封装：
    - 若队列已满：丢弃最旧元素（drop head），保证最新消息可进入；
    - dropped 记录累计丢弃条数，供日志/监控查看；
    - 入口队列（遥测管线）与每个连接的发送队列共用这一实现。
    """

    def __init__(self, cap: int):
        self._q: asyncio.Queue[T] = asyncio.Queue(maxsize=cap)
        self.dropped = 0

    def _drop_head(self) -> None:
        with contextlib.suppress(asyncio.QueueEmpty):
            self._q.get_nowait()
            self._q.task_done()
            self.dropped += 1

    def put_nowait(self, item: T) -> bool:
        """非阻塞入队；返回 True 表示为此丢弃了一条旧消息。"""
        dropped = False
        if self._q.full():
            self._drop_head()
            dropped = True
        self._q.put_nowait(item)
        return dropped

    async def put(self, item: T) -> None:
        if self._q.full():
            self._drop_head()
        await self._q.put(item)

    async def get(self) -> T:
        return await self._q.get()

    def task_done(self) -> None:
        self._q.task_done()

    async def join(self) -> None:
        await self._q.join()

    def full(self) -> bool:
        return self._q.full()

    def qsize(self) -> int:
        return self._q.qsize()
