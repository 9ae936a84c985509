# mydataclass/power_data.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List

from commons.base_dataclasses import BaseDataClass
from commons.normalizers import default_if_none, phases_or_zero
from meter.models import ClassifiedSample


def _zero_phases() -> Dict[str, float]:
    return {"R": 0.0, "Y": 0.0, "B": 0.0}


def _power_factor_range(row: Dict[str, Any]) -> None:
    pf = row.get("power_factor")
    if not 0.0 <= pf <= 1.0:
        raise ValueError(f"power_factor 超出 [0,1]: {pf}")


@dataclass(slots=True)
class PowerRecord(BaseDataClass):
    """
    落库记录：{timestamp, voltage{R,Y,B}, current{R,Y,B}, powerFactor, thd, activePower}
    缺失字段的兜底：电压/电流每相 0，功率因数 1.0，THD 与有功功率 0.0，时间戳取写入时刻。
    """
    timestamp: datetime = field(default_factory=datetime.now)
    voltage: Dict[str, float] = field(default_factory=_zero_phases)
    current: Dict[str, float] = field(default_factory=_zero_phases)
    power_factor: float = 1.0
    thd: float = 0.0
    active_power: float = 0.0

    DEFAULTS: ClassVar[Dict[str, Any]] = {
        "timestamp": datetime.now,
        "voltage": None,
        "current": None,
        "power_factor": None,
        "thd": None,
        "active_power": None,
    }

    # 与持久化 schema / 前端保持驼峰键名
    FIELD_MAPPING: ClassVar[Dict[str, str]] = {
        "powerFactor": "power_factor",
        "activePower": "active_power",
    }

    CONVERTERS: ClassVar[Dict[str, Any]] = {
        "timestamp": lambda x: x if isinstance(x, datetime) else datetime.now(),
        "voltage": phases_or_zero,
        "current": phases_or_zero,
        "power_factor": default_if_none(1.0),
        "thd": default_if_none(0.0),
        "active_power": default_if_none(0.0),
    }

    VALIDATORS: ClassVar[List] = [_power_factor_range]

    @classmethod
    def from_sample(cls, sample: ClassifiedSample, timestamp: datetime | None = None) -> "PowerRecord":
        fields = sample.record_fields()
        if fields is None:
            raise ValueError(f"样本类型 {sample.kind} 不落库")
        row: Dict[str, Any] = dict(fields)
        if timestamp is not None:
            row["timestamp"] = timestamp
        return cls.from_dict(row)

    def to_document(self) -> Dict[str, Any]:
        """对外（JSON / 前端）形式：驼峰键名 + ISO 时间戳"""
        return {
            "timestamp": self.timestamp.isoformat(),
            "voltage": dict(self.voltage),
            "current": dict(self.current),
            "powerFactor": self.power_factor,
            "thd": self.thd,
            "activePower": self.active_power,
        }
