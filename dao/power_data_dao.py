# -*- coding: utf-8 -*-
"""
PowerDataDao
------------
power_data 表的读写：建表、单条插入、按时间倒序取最近记录。
电压/电流按相展开为 voltage_r / voltage_y / voltage_b 等列。
"""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from commons.base_db import BaseDB
from commons.base_logger import BaseLogger
from mydataclass.power_data import PowerRecord


class PowerDataDao(BaseDB):
    """PowerDataDao 提供 PowerRecord 的数据库操作。"""

    TABLE = "power_data"

    # 统一维护列顺序，建表/插入/查询共用
    _COLUMNS: List[str] = [
        "timestamp",
        "voltage_r", "voltage_y", "voltage_b",
        "current_r", "current_y", "current_b",
        "power_factor", "thd", "active_power",
    ]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.logger = BaseLogger(__name__)

    # ------------------------------
    # Schema 管理
    # ------------------------------
    def ensure_table(self) -> None:
        """确保 power_data 表存在；若无则创建。"""
        ddl = f"""
        CREATE TABLE IF NOT EXISTS {self.TABLE} (
            id BIGINT AUTO_INCREMENT PRIMARY KEY,
            timestamp DATETIME(3) NOT NULL,
            voltage_r DOUBLE NOT NULL DEFAULT 0,
            voltage_y DOUBLE NOT NULL DEFAULT 0,
            voltage_b DOUBLE NOT NULL DEFAULT 0,
            current_r DOUBLE NOT NULL DEFAULT 0,
            current_y DOUBLE NOT NULL DEFAULT 0,
            current_b DOUBLE NOT NULL DEFAULT 0,
            power_factor DOUBLE NOT NULL DEFAULT 1,
            thd DOUBLE NOT NULL DEFAULT 0,
            active_power DOUBLE NOT NULL DEFAULT 0,
            INDEX idx_timestamp (timestamp)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """
        with self.connection_ctx() as conn:
            with conn.cursor() as cur:
                cur.execute(ddl)
            conn.commit()
        self.logger.log_info(f"数据表 {self.TABLE} 已就绪")

    # ------------------------------
    # 写入
    # ------------------------------
    @staticmethod
    def _row_from_record(record: PowerRecord) -> Tuple[Any, ...]:
        v, c = record.voltage, record.current
        return (
            record.timestamp,
            v["R"], v["Y"], v["B"],
            c["R"], c["Y"], c["B"],
            record.power_factor, record.thd, record.active_power,
        )

    def insert_power_data(self, record: PowerRecord) -> int:
        """插入一条记录，返回自增 id。异常向上抛给持久化 sink 统一处理。"""
        cols = ", ".join(self._COLUMNS)
        placeholders = ", ".join(["%s"] * len(self._COLUMNS))
        sql = f"INSERT INTO {self.TABLE} ({cols}) VALUES ({placeholders})"
        with self.connection_ctx() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, self._row_from_record(record))
                row_id = cur.lastrowid
            conn.commit()
        return row_id

    # ------------------------------
    # 查询
    # ------------------------------
    @classmethod
    def _record_from_row(cls, row: Dict[str, Any]) -> PowerRecord:
        return PowerRecord.from_dict({
            "timestamp": row["timestamp"],
            "voltage": {"R": row["voltage_r"], "Y": row["voltage_y"], "B": row["voltage_b"]},
            "current": {"R": row["current_r"], "Y": row["current_y"], "B": row["current_b"]},
            "power_factor": row["power_factor"],
            "thd": row["thd"],
            "active_power": row["active_power"],
        })

    def latest(self, limit: int = 20) -> List[PowerRecord]:
        """按时间倒序取最近 limit 条记录。"""
        cols = ", ".join(self._COLUMNS)
        sql = f"SELECT {cols} FROM {self.TABLE} ORDER BY timestamp DESC LIMIT %s"
        with self.connection_ctx() as conn:
            with conn.cursor(dictionary=True) as cur:
                cur.execute(sql, (int(limit),))
                rows = cur.fetchall()
        return [self._record_from_row(r) for r in rows]
