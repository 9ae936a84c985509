import asyncio
import json

import pytest

from commons.base_logger import BaseLogger
from meter.errors import ObserverConnectionError, ObserverDisconnected
from meter.setting import HubSettings
from meter_socket.connection import ConnectionState
from meter_socket.hub import BroadcastHub

_log = BaseLogger(name="test_hub")


class FakeTransport:
    """测试替身：记录发送内容，可模拟握手慢、发送失败、发送阻塞、心跳失败"""

    def __init__(self, fail_send=False, fail_accept=False, fail_ping=False,
                 accept_delay=0.0, block_send=False, recv_delay=0.0):
        self.fail_send = fail_send
        self.fail_accept = fail_accept
        self.fail_ping = fail_ping
        self.accept_delay = accept_delay
        self.block_send = block_send
        self.recv_delay = recv_delay
        self.sent = []
        self.pings = 0
        self.close_calls = 0
        self.inbox = asyncio.Queue()
        self._gate = asyncio.Event()

    async def accept(self):
        if self.accept_delay:
            await asyncio.sleep(self.accept_delay)
        if self.fail_accept:
            raise ConnectionError("handshake refused")

    async def receive(self):
        if self.recv_delay:
            await asyncio.sleep(self.recv_delay)
        item = await self.inbox.get()
        if item is None:
            raise ObserverDisconnected("peer closed")
        return item

    async def send_text(self, text):
        if self.block_send:
            await self._gate.wait()
        if self.fail_send:
            raise ConnectionError("broken pipe")
        self.sent.append(json.loads(text))

    async def ping(self):
        self.pings += 1
        if self.fail_ping:
            raise ConnectionError("ping failed")

    async def close(self, code=1000):
        self.close_calls += 1


def _hub(**kwargs):
    kwargs.setdefault("heartbeat_ms", 60_000)
    kwargs.setdefault("liveness_ms", 2000)
    return BroadcastHub(HubSettings(**kwargs), logger=_log)


def test_broadcast_survives_one_failing_connection():
    """N 个连接中一个发送失败：其余 N-1 个照常收到，失败的被移除"""
    async def _run():
        hub = _hub()
        good = [FakeTransport(), FakeTransport()]
        bad = FakeTransport(fail_send=True)
        conns = [await hub.connect(t) for t in (*good, bad)]
        assert hub.count() == 3

        env = {"type": "iot", "data": "[230,229,231]"}
        assert await hub.broadcast(env) == 3

        await asyncio.wait_for(conns[2].closed.wait(), timeout=1)
        for c in conns[:2]:
            await asyncio.wait_for(c.flush(), timeout=1)

        assert hub.count() == 2
        assert conns[2].state is ConnectionState.CLOSED
        assert bad.close_calls == 1
        assert all(t.sent == [env] for t in good)

        # 之后的广播只投递给剩下的连接
        assert await hub.broadcast({"type": "iot", "data": "[1]"}) == 2
        await hub.close_all()
        assert hub.count() == 0

    asyncio.run(_run())


def test_liveness_warning_does_not_close():
    """握手超过存活检查时限：只告警，连接照常进入 OPEN"""
    async def _run():
        hub = _hub(liveness_ms=20)
        t = FakeTransport(accept_delay=0.1)
        conn = await hub.connect(t)
        assert conn.liveness_warned is True
        assert conn.is_open
        assert hub.count() == 1
        await hub.close_all()

    asyncio.run(_run())


def test_liveness_quiet_when_opened_in_time():
    async def _run():
        hub = _hub(liveness_ms=20)
        conn = await hub.connect(FakeTransport())
        await asyncio.sleep(0.05)
        assert conn.liveness_warned is False
        await hub.close_all()

    asyncio.run(_run())


def test_echo_only_to_sender():
    async def _run():
        hub = _hub()
        sender, other = FakeTransport(), FakeTransport()
        c1 = await hub.connect(sender)
        c2 = await hub.connect(other)
        assert await hub.handle_inbound(c1, '{"message": "Hello Server!"}') is True
        await c1.flush()
        await c2.flush()
        assert sender.sent == [{"type": "echo", "data": {"message": "Hello Server!"}}]
        assert other.sent == []
        await hub.close_all()

    asyncio.run(_run())


def test_malformed_inbound_is_dropped():
    async def _run():
        hub = _hub()
        t = FakeTransport()
        conn = await hub.connect(t)
        assert await hub.handle_inbound(conn, "not json") is False
        await conn.flush()
        assert t.sent == []
        assert conn.is_open
        await hub.close_all()

    asyncio.run(_run())


def test_disconnect_is_idempotent():
    async def _run():
        hub = _hub()
        t = FakeTransport()
        conn = await hub.connect(t)
        assert await hub.disconnect(conn) is True
        assert await hub.disconnect(conn) is False
        assert t.close_calls == 1
        assert hub.count() == 0
        assert conn.enqueue({"type": "iot", "data": "x"}) is False

    asyncio.run(_run())


def test_overflow_drop_oldest():
    async def _run():
        hub = _hub(outbound_queue_cap=2, overflow_policy="drop_oldest")
        t = FakeTransport()
        conn = await hub.connect(t)
        envs = [{"type": "iot", "data": str(i)} for i in range(3)]
        # 同步连续入队，发送协程还没机会运行
        assert all(conn.enqueue(e) for e in envs)
        assert conn.dropped == 1
        await conn.flush()
        assert t.sent == envs[1:]
        await hub.close_all()

    asyncio.run(_run())


def test_overflow_disconnect_policy():
    async def _run():
        hub = _hub(outbound_queue_cap=2, overflow_policy="disconnect")
        t = FakeTransport(block_send=True)
        conn = await hub.connect(t)
        assert conn.enqueue({"type": "iot", "data": "1"}) is True
        assert conn.enqueue({"type": "iot", "data": "2"}) is True
        assert conn.enqueue({"type": "iot", "data": "3"}) is False
        await asyncio.wait_for(conn.closed.wait(), timeout=1)
        assert hub.count() == 0

    asyncio.run(_run())


def test_heartbeat_pings_open_connection():
    async def _run():
        hub = _hub(heartbeat_ms=10)
        t = FakeTransport()
        await hub.connect(t)
        await asyncio.sleep(0.08)
        assert t.pings >= 2
        await hub.close_all()

    asyncio.run(_run())


def test_heartbeat_failure_removes_connection():
    async def _run():
        hub = _hub(heartbeat_ms=10)
        conn = await hub.connect(FakeTransport(fail_ping=True))
        await asyncio.wait_for(conn.closed.wait(), timeout=1)
        assert hub.count() == 0

    asyncio.run(_run())


def test_window_snapshot_sent_on_open():
    """新连接先收到当前窗口快照"""
    async def _run():
        snap = {"voltage": {"labels": ["10:00:00"], "R": [230.0]}}
        hub = BroadcastHub(HubSettings(heartbeat_ms=60_000), window_provider=lambda: snap, logger=_log)
        t = FakeTransport()
        conn = await hub.connect(t)
        await conn.flush()
        assert t.sent == [{"type": "window", "data": snap}]
        await hub.close_all()

    asyncio.run(_run())


def test_handshake_failure():
    async def _run():
        hub = _hub()
        t = FakeTransport(fail_accept=True)
        with pytest.raises(ObserverConnectionError):
            await hub.connect(t)
        assert hub.count() == 0
        assert t.close_calls == 1

    asyncio.run(_run())


def test_serve_echoes_until_peer_closes():
    async def _run():
        hub = _hub()
        t = FakeTransport(recv_delay=0.01)
        t.inbox.put_nowait('{"message": "ping?"}')
        t.inbox.put_nowait(None)
        await asyncio.wait_for(hub.serve(t), timeout=1)
        assert t.sent == [{"type": "echo", "data": {"message": "ping?"}}]
        assert hub.count() == 0
        assert t.close_calls == 1

    asyncio.run(_run())
