# ────────────────────────────────────────────────────────────────
# 模块用途：观察者连接中心 BroadcastHub
# 说明：
#   - 持有活跃连接集合，只通过 connect / disconnect / broadcast / count 访问；
#   - broadcast 遍历集合快照，单个连接失败不影响其它连接；
#   - 上行消息只回显给发送方（echo），遥测数据由管线经 broadcast 推给所有人；
#   - disconnect 幂等：同一连接只会被移除、关闭一次。
# ────────────────────────────────────────────────────────────────
from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Set, Union

from commons.base_logger import BaseLogger
from meter.errors import DecodeError, ObserverConnectionError, ObserverDisconnected
from meter.setting import HubSettings
from meter_socket.adapters.envelope import Envelope, echo_envelope, parse_inbound, window_envelope
from meter_socket.connection import ObserverConnection, ObserverTransport

WindowProvider = Callable[[], Dict[str, Any]]


class BroadcastHub:
    def __init__(
        self,
        settings: Optional[HubSettings] = None,
        window_provider: Optional[WindowProvider] = None,
        logger: Optional[BaseLogger] = None,
    ):
        self.settings = settings or HubSettings()
        self.window_provider = window_provider
        self.logger = logger or BaseLogger(name="BroadcastHub", to_file=True)
        self._connections: Set[ObserverConnection] = set()

    def count(self) -> int:
        return len(self._connections)

    # === 连接管理 ===

    async def connect(self, transport: ObserverTransport) -> ObserverConnection:
        """登记连接 → 启动存活检查 → 握手进入 OPEN。握手失败抛 ObserverConnectionError。"""
        conn = ObserverConnection(transport, self.settings, on_fault=self.disconnect, logger=self.logger)
        self._connections.add(conn)
        conn.start_liveness_timer()
        try:
            await conn.open()
        except Exception as e:
            await self.disconnect(conn, f"握手失败: {e!r}")
            raise ObserverConnectionError(f"连接 #{conn.id} 握手失败") from e

        self.logger.log_info(f"客户端已连接 #{conn.id}，当前在线 {self.count()}")
        if self.settings.send_window_on_open and self.window_provider is not None:
            conn.enqueue(window_envelope(self.window_provider()))
        return conn

    async def disconnect(self, conn: ObserverConnection, reason: str = "closed") -> bool:
        """移出活跃集合并关闭连接；重复调用返回 False。"""
        if conn not in self._connections:
            return False
        self._connections.discard(conn)
        await conn.close()
        self.logger.log_info(f"客户端已断开 #{conn.id}（{reason}），当前在线 {self.count()}")
        return True

    async def close_all(self) -> None:
        for conn in tuple(self._connections):
            await self.disconnect(conn, "server shutdown")

    # === 广播 ===

    async def broadcast(self, envelope: Envelope) -> int:
        """投递给快照中的每个 OPEN 连接，返回成功入队的连接数。"""
        delivered = 0
        for conn in tuple(self._connections):
            try:
                if conn.enqueue(envelope):
                    delivered += 1
            except Exception as e:
                conn.fault(f"广播入队失败: {e!r}")
        return delivered

    # === 上行消息 ===

    async def handle_inbound(self, conn: ObserverConnection, raw: Union[str, bytes]) -> bool:
        try:
            message = parse_inbound(raw)
        except DecodeError as e:
            self.logger.log_warning(f"连接 #{conn.id} 上行消息解析失败，已丢弃: {e}")
            return False
        self.logger.log_info(f"收到 #{conn.id}: {message}")
        return conn.enqueue(echo_envelope(message))

    async def serve(self, transport: ObserverTransport) -> None:
        """单个连接的完整生命周期：接入 → 循环读取回显 → 断开"""
        try:
            conn = await self.connect(transport)
        except ObserverConnectionError as e:
            self.logger.log_warning(str(e))
            return

        reason = "closed"
        try:
            while conn.is_open:
                try:
                    raw = await transport.receive()
                except ObserverDisconnected:
                    reason = "peer closed"
                    break
                except Exception as e:
                    reason = f"receive error: {e!r}"
                    self.logger.log_error(f"连接 #{conn.id} 读取失败: {e!r}", exc_info=False)
                    break
                await self.handle_inbound(conn, raw)
        finally:
            await self.disconnect(conn, reason)
