#     遥测管线 TelemetryPipeline
from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Optional

from commons.base_logger import BaseLogger
from meter.channel_window import ChannelWindows
from meter.drop_head_queue import DropHeadQueue
from meter.errors import DecodeError, NoRegisterData
from meter.handler_bus import HandlerBus
from meter.models import ClassifiedSample
from meter.persistence_sink import PersistenceSink
from meter.register_classifier import RegisterClassifier
from meter.register_decoder import RegisterDecoder, payload_text
from meter_socket.adapters.envelope import iot_envelope, sample_envelope

# 广播函数签名：接受一个信封 dict，返回投递到的连接数
Broadcast = Callable[[dict], Awaitable[int]]

_SENTINEL = object()


class TelemetryPipeline:
    """
    原始遥测 → 解码 → 分类 → 分发：
      - push_raw() 把原始消息放进有界丢头队列，上游速度 > 处理速度时丢最旧；
      - 单个 worker 顺序消费，保证同一来源的消息按到达顺序处理；
      - 每条消息先以 {"type":"iot"} 原样转发给所有观察者，再解码分类；
      - 有效样本经 HandlerBus 并发分发：窗口更新 / 落库（即发即忘）/ 广播分类结果；
      - 解码失败、Corrupt、Unclassifiable 只记日志并丢弃，不会让 worker 退出。
    """

    def __init__(
        self,
        broadcast: Broadcast,
        windows: Optional[ChannelWindows] = None,
        sink: Optional[PersistenceSink] = None,
        queue_cap: int = 1024,
        decoder: Optional[RegisterDecoder] = None,
        classifier: Optional[RegisterClassifier] = None,
        logger: Optional[BaseLogger] = None,
    ):
        self._broadcast = broadcast
        self.windows = windows if windows is not None else ChannelWindows()
        self.sink = sink
        self.decoder = decoder or RegisterDecoder()
        self.classifier = classifier or RegisterClassifier()
        self.logger = logger or BaseLogger(name="TelemetryPipeline", to_file=True)

        self._queue: DropHeadQueue[Any] = DropHeadQueue(queue_cap)
        self._bus = HandlerBus(logger=self.logger)
        self._worker: Optional[asyncio.Task] = None

        # 计数器：便于 /healthz 与测试观察
        self.stats = {"received": 0, "decode_failed": 0, "classified": 0, "discarded": 0}

        self._bus.add(self._update_window)
        if self.sink is not None:
            self._bus.add(self._persist)
        self._bus.add(self._broadcast_sample)

    # === 对外接口 ===

    def on(self, handler: Callable[[ClassifiedSample], Awaitable[None]]) -> None:
        """追加样本订阅者"""
        self._bus.add(handler)

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="telemetry-pipeline")

    async def stop(self) -> None:
        """投递哨兵让 worker 处理完已入队消息后退出"""
        if self._worker is None:
            return
        await self._queue.put(_SENTINEL)
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None

    async def push_raw(self, raw: Any) -> None:
        await self._queue.put(raw)

    async def join(self) -> None:
        """等待已入队消息全部处理完"""
        await self._queue.join()

    @property
    def queue_dropped(self) -> int:
        return self._queue.dropped

    # === 单条处理 ===

    async def process(self, raw: Any) -> Optional[ClassifiedSample]:
        """处理一条原始消息；返回分类样本（解码失败返回 None）"""
        self.stats["received"] += 1
        try:
            text = payload_text(raw)
        except DecodeError as e:
            self.stats["decode_failed"] += 1
            self.logger.log_warning(f"消息解码失败，已丢弃: {e}")
            return None

        await self._broadcast(iot_envelope(text))

        try:
            values = self.decoder.decode_text(text)
        except NoRegisterData as e:
            self.stats["decode_failed"] += 1
            self.logger.log_warning(f"未找到寄存器数据: {e}")
            return None
        except DecodeError as e:
            self.stats["decode_failed"] += 1
            self.logger.log_warning(f"寄存器解析失败，已丢弃: {e}")
            return None

        sample = self.classifier.classify(values)
        if not sample.is_valid:
            self.stats["discarded"] += 1
            self.logger.log_warning(f"样本无效（{sample.kind}），已丢弃: {list(values)}")
            return sample

        self.stats["classified"] += 1
        self.logger.log_debug(f"寄存器 {list(values)} → {sample}")
        await self._bus.emit(sample)
        return sample

    # === handlers ===

    async def _update_window(self, sample: ClassifiedSample) -> None:
        self.windows.update(sample)

    async def _persist(self, sample: ClassifiedSample) -> None:
        self.sink.spawn(sample)

    async def _broadcast_sample(self, sample: ClassifiedSample) -> None:
        await self._broadcast(sample_envelope(sample))

    # === 内部 ===

    async def _run(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                if raw is _SENTINEL:
                    return
                await self.process(raw)
            except Exception as e:
                # 兜底：任何未预期异常都不让 worker 退出
                self.logger.log_error(f"处理消息异常: {e!r}")
            finally:
                self._queue.task_done()
