# Handler 分发总线 HandlerBus

from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, List, Optional

from commons.base_logger import BaseLogger
from meter.models import ClassifiedSample

SampleHandler = Callable[[ClassifiedSample], Awaitable[None]]


class HandlerBus:
    """
    管理并并发调用所有已注册的异步样本 handler（窗口更新、持久化、广播……）。
    - 并发 fan-out
    - 单个 handler 出错只记录日志，不影响其它 handler
    """

    def __init__(self, logger: Optional[BaseLogger] = None):
        self._handlers: List[SampleHandler] = []
        self.logger = logger or BaseLogger(name="HandlerBus")

    def add(self, handler: SampleHandler) -> None:
        """注册 handler。约定：async def handler(sample) -> None"""
        self._handlers.append(handler)

    async def emit(self, sample: ClassifiedSample) -> None:
        if not self._handlers:
            return
        results = await asyncio.gather(*(h(sample) for h in self._handlers), return_exceptions=True)
        for handler, r in zip(self._handlers, results):
            if isinstance(r, Exception):
                name = getattr(handler, "__name__", repr(handler))
                self.logger.log_error(f"handler 执行失败 {name}: {r!r}", exc_info=False)
