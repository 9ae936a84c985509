import asyncio
import json

from commons.base_logger import BaseLogger
from meter.models import Corrupt, PowerFactor, ThreePhaseVoltage
from meter.persistence_sink import PersistenceSink
from meter.pipeline import TelemetryPipeline

_log = BaseLogger(name="test_pipeline")


class Collector:
    """替代 hub.broadcast：记录所有广播出去的信封"""

    def __init__(self):
        self.envelopes = []

    async def __call__(self, envelope):
        self.envelopes.append(envelope)
        return 1

    def of(self, kind):
        return [e for e in self.envelopes if e["type"] == kind]


class MemoryWriter:
    def __init__(self):
        self.records = []

    def insert_power_data(self, record):
        self.records.append(record)
        return len(self.records)


def _pipeline(sink=None):
    bc = Collector()
    return TelemetryPipeline(broadcast=bc, sink=sink, logger=_log), bc


def test_process_voltage_frame():
    async def _run():
        p, bc = _pipeline()
        sample = await p.process(json.dumps({"deviceId": "m1", "data": "[230,229,231]"}))
        assert sample == ThreePhaseVoltage(R=230, Y=229, B=231)
        # 先原样转发，再广播分类结果
        assert bc.envelopes[0] == {"type": "iot", "data": "[230,229,231]"}
        assert bc.envelopes[1] == {
            "type": "sample",
            "data": {"kind": "voltage", "R": 230.0, "Y": 229.0, "B": 231.0},
        }
        assert p.windows.snapshot()["voltage"]["R"] == [230.0]
        assert p.stats["classified"] == 1

    asyncio.run(_run())


def test_frame_without_registers_is_forwarded_then_dropped():
    """没有寄存器列表：iot 照常转发，但不产生样本"""
    async def _run():
        p, bc = _pipeline()
        assert await p.process("Hello Server!") is None
        assert bc.of("iot") == [{"type": "iot", "data": "Hello Server!"}]
        assert bc.of("sample") == []
        assert p.stats["decode_failed"] == 1

    asyncio.run(_run())


def test_undecodable_payload_is_not_forwarded():
    async def _run():
        p, bc = _pipeline()
        assert await p.process(b"\xff\xfe") is None
        assert await p.process("") is None
        assert bc.envelopes == []
        assert p.stats["decode_failed"] == 2

    asyncio.run(_run())


def test_corrupt_sample_discarded():
    async def _run():
        p, bc = _pipeline()
        sample = await p.process("[2000000, 1, 2]")
        assert isinstance(sample, Corrupt)
        assert bc.of("sample") == []
        assert p.stats["discarded"] == 1
        assert p.windows.snapshot()["voltage"]["labels"] == []

    asyncio.run(_run())


def test_worker_preserves_order():
    async def _run():
        p, bc = _pipeline()
        await p.start()
        frames = ["[0.85]", "[50.0]", "[10,20,30]", "[0.9, 3.2]", "[0, 1200, 0, 0]"]
        for f in frames:
            await p.push_raw(f)
        await asyncio.wait_for(p.join(), timeout=1)
        await p.stop()
        kinds = [e["data"]["kind"] for e in bc.of("sample")]
        assert kinds == ["power_factor", "frequency", "current", "pf_thd", "active_power"]
        assert p.stats["received"] == len(frames)

    asyncio.run(_run())


def test_worker_keeps_running_after_bad_frames():
    async def _run():
        p, bc = _pipeline()
        await p.start()
        for f in ["garbage", "[1, abc]", "[1.5]", "[0.5]"]:
            await p.push_raw(f)
        await asyncio.wait_for(p.join(), timeout=1)
        await p.stop()
        assert bc.of("sample") == [{"type": "sample", "data": {"kind": "power_factor", "value": 0.5}}]

    asyncio.run(_run())


def test_persistence_through_sink():
    """可落库样本写入 writer；频率样本不落库"""
    async def _run():
        writer = MemoryWriter()
        sink = PersistenceSink(writer, logger=_log)
        p, _ = _pipeline(sink)
        await p.process("[230,229,231]")
        await p.process("[50.0]")
        await sink.drain()
        assert len(writer.records) == 1
        assert writer.records[0].voltage == {"R": 230.0, "Y": 229.0, "B": 231.0}
        assert writer.records[0].power_factor == 1.0

    asyncio.run(_run())


def test_failing_subscriber_does_not_block_broadcast():
    async def _run():
        p, bc = _pipeline()

        async def boom(sample):
            raise RuntimeError("subscriber down")

        p.on(boom)
        sample = await p.process("[0.85]")
        assert sample == PowerFactor(0.85)
        assert len(bc.of("sample")) == 1

    asyncio.run(_run())
