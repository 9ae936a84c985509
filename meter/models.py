# 数据模型：寄存器数组 → 分类样本（带标签的变体）
from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, ClassVar, Dict, Optional, Tuple

# 解码后的寄存器数组：有序 float 元组，长度 >= 1
RegisterArray = Tuple[float, ...]


@dataclass(frozen=True)
class ClassifiedSample:
    """
    分类结果的公共基类。
    每个子类用 kind 区分；下游（窗口、持久化、广播）只依赖下面三个方法。
    """
    kind: ClassVar[str] = "sample"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}

    def window_values(self) -> Optional[Dict[str, float]]:
        """进入滑动窗口的带标签数值；None 表示该样本不进窗口"""
        return None

    def record_fields(self) -> Optional[Dict[str, Any]]:
        """持久化字段（PowerRecord 的键）；None 表示不落库"""
        return None

    @property
    def is_valid(self) -> bool:
        return True


@dataclass(frozen=True)
class PowerFactor(ClassifiedSample):
    kind: ClassVar[str] = "power_factor"
    value: float

    def record_fields(self):
        return {"powerFactor": self.value}


@dataclass(frozen=True)
class Frequency(ClassifiedSample):
    kind: ClassVar[str] = "frequency"
    value: float          # Hz


@dataclass(frozen=True)
class PowerFactorAndTHD(ClassifiedSample):
    kind: ClassVar[str] = "pf_thd"
    power_factor: Optional[float]
    thd: Optional[float]  # %

    def window_values(self):
        # 两个值都有效才进窗口
        if self.power_factor is None or self.thd is None:
            return None
        return {"powerFactor": self.power_factor, "thd": self.thd}

    def record_fields(self):
        return {"powerFactor": self.power_factor, "thd": self.thd}


@dataclass(frozen=True)
class ThreePhase(ClassifiedSample):
    R: float
    Y: float
    B: float

    def phases(self) -> Dict[str, float]:
        return {"R": self.R, "Y": self.Y, "B": self.B}

    def window_values(self):
        return self.phases()


@dataclass(frozen=True)
class ThreePhaseVoltage(ThreePhase):
    kind: ClassVar[str] = "voltage"

    def record_fields(self):
        return {"voltage": self.phases()}


@dataclass(frozen=True)
class ThreePhaseCurrent(ThreePhase):
    kind: ClassVar[str] = "current"

    def record_fields(self):
        return {"current": self.phases()}


@dataclass(frozen=True)
class ActivePower(ClassifiedSample):
    kind: ClassVar[str] = "active_power"
    value: float          # W

    def record_fields(self):
        return {"activePower": self.value}


@dataclass(frozen=True)
class Corrupt(ClassifiedSample):
    """三元组中有超大值或非有限值"""
    kind: ClassVar[str] = "corrupt"
    values: RegisterArray

    @property
    def is_valid(self) -> bool:
        return False


@dataclass(frozen=True)
class Unclassifiable(ClassifiedSample):
    kind: ClassVar[str] = "unclassifiable"
    values: RegisterArray

    @property
    def is_valid(self) -> bool:
        return False
