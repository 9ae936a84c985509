# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：单个观察者连接 ObserverConnection
# 状态机：CONNECTING → OPEN → CLOSING → CLOSED（终态）
#   - 登记即启动存活检查（默认 2000ms）：届时仍未 OPEN 只告警，不强制关闭；
#   - 进入 OPEN 启动心跳（默认 5000ms）与发送协程；
#   - 发送队列有界：drop_oldest 丢最旧，disconnect 溢出即断开；
#   - 发送/心跳失败 → CLOSING，并回调 hub 移除（hub 侧保证只移除一次）；
#   - close() 幂等：取消全部定时任务，关闭底层传输。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import asyncio
import contextlib
import enum
import itertools
from typing import Awaitable, Callable, Optional, Protocol, Union

from commons.base_logger import BaseLogger
from meter.drop_head_queue import DropHeadQueue
from meter.setting import HubSettings
from meter_socket.adapters.envelope import Envelope, dumps


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ObserverTransport(Protocol):
    """底层双向通道（协议）：Starlette WebSocket 适配器或测试替身"""
    async def accept(self) -> None: ...
    async def receive(self) -> Union[str, bytes]: ...  # 对端断开抛 ObserverDisconnected
    async def send_text(self, text: str) -> None: ...
    async def ping(self) -> None: ...
    async def close(self, code: int = 1000) -> None: ...


FaultCallback = Callable[["ObserverConnection", str], Awaitable[object]]

_ids = itertools.count(1)


class ObserverConnection:
    def __init__(
        self,
        transport: ObserverTransport,
        settings: HubSettings,
        on_fault: FaultCallback,
        logger: Optional[BaseLogger] = None,
    ):
        self.id = next(_ids)
        self.transport = transport
        self.settings = settings
        self.state = ConnectionState.CONNECTING
        self.logger = logger or BaseLogger(name="ObserverConnection")
        self.liveness_warned = False
        self.closed = asyncio.Event()

        self._on_fault = on_fault
        self._outbox: DropHeadQueue[Envelope] = DropHeadQueue(settings.outbound_queue_cap)
        self._liveness_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._fault_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<ObserverConnection #{self.id} {self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def dropped(self) -> int:
        return self._outbox.dropped

    # === 生命周期 ===

    def start_liveness_timer(self) -> None:
        self._liveness_task = asyncio.create_task(
            self._liveness_check(), name=f"observer-{self.id}:liveness"
        )

    async def open(self) -> None:
        """完成握手并进入 OPEN；握手期间若已被关闭则保持原状态。"""
        await self.transport.accept()
        if self.state is not ConnectionState.CONNECTING:
            return
        self.state = ConnectionState.OPEN
        self._writer_task = asyncio.create_task(self._writer(), name=f"observer-{self.id}:writer")
        self._heartbeat_task = asyncio.create_task(self._heartbeat(), name=f"observer-{self.id}:heartbeat")

    async def close(self, code: int = 1000) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        current = asyncio.current_task()
        tasks = [
            t for t in (self._liveness_task, self._heartbeat_task, self._writer_task)
            if t is not None and t is not current and not t.done()
        ]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        with contextlib.suppress(Exception):
            await self.transport.close(code)
        self.state = ConnectionState.CLOSED
        self.closed.set()

    # === 发送 ===

    def enqueue(self, envelope: Envelope) -> bool:
        """投递到发送队列；非 OPEN 或按 disconnect 策略溢出时返回 False。"""
        if self.state is not ConnectionState.OPEN:
            return False
        if self._outbox.full() and self.settings.overflow_policy == "disconnect":
            self.fault("发送队列溢出")
            return False
        if self._outbox.put_nowait(envelope):
            self.logger.log_debug(f"连接 #{self.id} 发送队列已满，丢弃最旧消息（累计 {self.dropped}）")
        return True

    async def flush(self) -> None:
        """等待发送队列清空（发送协程存活时才有意义）"""
        if self._writer_task is not None and not self._writer_task.done():
            await self._outbox.join()

    def fault(self, reason: str) -> None:
        """故障：进入 CLOSING，后台回调 hub 完成移除"""
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        self.state = ConnectionState.CLOSING
        self.logger.log_warning(f"连接 #{self.id} 故障: {reason}")
        self._fault_task = asyncio.create_task(
            self._on_fault(self, reason), name=f"observer-{self.id}:fault"
        )

    # === 内部协程 ===

    async def _liveness_check(self) -> None:
        await asyncio.sleep(self.settings.liveness_s)
        if self.state is not ConnectionState.OPEN:
            self.liveness_warned = True
            self.logger.log_warning(
                f"连接 #{self.id} 在 {self.settings.liveness_ms}ms 内未进入 OPEN（当前 {self.state.value}）"
            )

    async def _heartbeat(self) -> None:
        while self.state is ConnectionState.OPEN:
            await asyncio.sleep(self.settings.heartbeat_s)
            if self.state is not ConnectionState.OPEN:
                return
            try:
                await self.transport.ping()
            except Exception as e:
                self.fault(f"心跳失败: {e!r}")
                return

    async def _writer(self) -> None:
        while True:
            envelope = await self._outbox.get()
            try:
                await self.transport.send_text(dumps(envelope))
            except Exception as e:
                self.fault(f"发送失败: {e!r}")
                return
            finally:
                self._outbox.task_done()
