# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：分类样本异步落库（PersistenceSink）
# 说明：
#   - write()：样本 → PowerRecord（字段兜底）→ DAO 在线程池中插入；
#   - 写入失败只记日志，样本丢弃，不重试、不排队；
#   - spawn()：即发即忘，连接断开也不取消进行中的写入；stop 时 drain() 等待收尾。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
import asyncio
from datetime import datetime
from typing import Optional, Protocol, Set

import mysql.connector

from commons.base_logger import BaseLogger
from meter.errors import PersistenceError
from meter.models import ClassifiedSample
from mydataclass.power_data import PowerRecord


class PowerDataWriter(Protocol):
    """落库接口（协议）：PowerDataDao 或测试替身"""
    def insert_power_data(self, record: PowerRecord) -> int: ...


class PersistenceSink:
    def __init__(
        self,
        writer: PowerDataWriter,
        logger: Optional[BaseLogger] = None,
        max_concurrency: int = 4,
    ):
        self.writer = writer
        # 并发写入不超过连接池大小，多出的写入排队等待
        self._slots = asyncio.Semaphore(max(1, max_concurrency))
        self.logger = logger or BaseLogger(name="PersistenceSink", to_file=True)
        self._pending: Set[asyncio.Task] = set()
        self.written = 0
        self.failed = 0

    @staticmethod
    def accepts(sample: ClassifiedSample) -> bool:
        return sample.is_valid and sample.record_fields() is not None

    async def write(self, sample: ClassifiedSample, timestamp: Optional[datetime] = None) -> bool:
        """写入一条样本；成功返回 True，失败记录日志后返回 False。"""
        if not self.accepts(sample):
            return False
        try:
            record = PowerRecord.from_sample(sample, timestamp)
            async with self._slots:
                row_id = await asyncio.to_thread(self.writer.insert_power_data, record)
        except (PersistenceError, mysql.connector.Error, ValueError) as e:
            self.failed += 1
            self.logger.log_error(f"样本落库失败 kind={sample.kind}: {e}", exc_info=False)
            return False
        except Exception as e:
            # 即发即忘任务没人等结果，未预期异常也在这里记录后丢弃
            self.failed += 1
            self.logger.log_error(f"样本落库异常 kind={sample.kind}: {e!r}")
            return False
        self.written += 1
        self.logger.log_debug(f"样本已落库 id={row_id} kind={sample.kind}")
        return True

    def spawn(self, sample: ClassifiedSample) -> Optional[asyncio.Task]:
        """即发即忘：后台写入，保留任务引用直到完成。"""
        if not self.accepts(sample):
            return None
        task = asyncio.create_task(self.write(sample, datetime.now()), name=f"persist:{sample.kind}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """等待所有进行中的写入结束（退出阶段调用）"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
