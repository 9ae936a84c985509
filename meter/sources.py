# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：上游遥测来源（TelemetrySource）
# 说明：
#   - 使用 typing.Protocol 约束来源需要提供的方法，云端事件流客户端可按同一接口接入；
#   - SyntheticSource：没有真实设备时按固定间隔生成测试帧；
#   - ReplayFileSource：逐行回放录制的原始消息；
#   - pump()：把任意来源持续推入管线，直到来源结束或收到停止信号。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
import asyncio
import json
import random
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Protocol

from commons.base_logger import BaseLogger


class TelemetrySource(Protocol):
    """遥测来源接口（协议）"""
    def stream(self) -> AsyncIterator[Any]: ...
    def close(self) -> None: ...


class PipelineProto(Protocol):
    async def push_raw(self, raw: Any) -> None: ...


class SyntheticSource:
    """
    合成数据源：轮流生成不同长度的寄存器帧，覆盖全部分类分支，
    包括 1 值（功率因数 / 频率）、2 值（PF+THD）、3 值（电压 / 电流）、多值（有功功率），
    偶尔夹带 nan。输出格式模拟设备上报：{"deviceId": ..., "data": "[...]"}。
    """

    def __init__(self, interval_s: float = 5.0, device_id: str = "meter-01", seed: Optional[int] = None):
        self.interval_s = interval_s
        self.device_id = device_id
        self._rng = random.Random(seed)
        self._closed = False
        self._builders = [
            self._voltage, self._current, self._pf_thd,
            self._power_factor, self._frequency, self._active_power,
        ]

    # 各类帧
    def _voltage(self):
        return [round(self._rng.uniform(220.0, 240.0), 1) for _ in range(3)]

    def _current(self):
        return [round(self._rng.uniform(5.0, 40.0), 2) for _ in range(3)]

    def _pf_thd(self):
        return [round(self._rng.uniform(0.80, 0.99), 3), round(self._rng.uniform(1.0, 8.0), 2)]

    def _power_factor(self):
        return [round(self._rng.uniform(0.80, 0.99), 3)]

    def _frequency(self):
        return [round(self._rng.uniform(49.8, 50.2), 2)]

    def _active_power(self):
        return [0, round(self._rng.uniform(500.0, 8000.0), 1), 0, 0]

    def frame(self, index: int) -> str:
        values = self._builders[index % len(self._builders)]()
        tokens = [str(v) for v in values]
        if self._rng.random() < 0.05:
            tokens[-1] = "nan"
        return json.dumps({"deviceId": self.device_id, "data": "[" + ",".join(tokens) + "]"})

    async def stream(self) -> AsyncIterator[str]:
        index = 0
        while not self._closed:
            yield self.frame(index)
            index += 1
            await asyncio.sleep(self.interval_s)

    def close(self) -> None:
        self._closed = True


class ReplayFileSource:
    """逐行回放文件中的原始消息（空行跳过），每行间隔 interval_s 秒"""

    def __init__(self, path: str, interval_s: float = 0.0):
        self.path = Path(path)
        self.interval_s = interval_s
        self._closed = False

    async def stream(self) -> AsyncIterator[str]:
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                if self._closed:
                    return
                line = line.strip()
                if not line:
                    continue
                yield line
                if self.interval_s > 0:
                    await asyncio.sleep(self.interval_s)

    def close(self) -> None:
        self._closed = True


async def pump(
    source: TelemetrySource,
    pipeline: PipelineProto,
    stop_evt: Optional[asyncio.Event] = None,
    logger: Optional[BaseLogger] = None,
) -> int:
    """把来源推入管线，返回推送条数；来源异常记录日志后结束。"""
    logger = logger or BaseLogger(name="TelemetrySource")
    pushed = 0
    try:
        async for raw in source.stream():
            if stop_evt is not None and stop_evt.is_set():
                break
            await pipeline.push_raw(raw)
            pushed += 1
    except Exception as e:
        logger.log_error(f"遥测来源异常: {e!r}")
    finally:
        source.close()
    logger.log_info(f"遥测来源结束，共推送 {pushed} 条")
    return pushed
