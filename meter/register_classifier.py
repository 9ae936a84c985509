# ────────────────────────────────────────────────────────────────
# 模块用途：寄存器数组 → 物理量样本（启发式分类）
# 说明：
#   - 只按数组长度 + 数值区间判定，与历史数据无关（纯函数）；
#   - 规则表自上而下求值，第一个命中的规则胜出，均不命中则 Unclassifiable；
#   - 各物理量区间本身存在重叠（如 [0,1] 既是功率因数也是合法电流），
#     判定结果完全依赖规则顺序，这是已知局限，不做“修正”。
# ────────────────────────────────────────────────────────────────
from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from commons.normalizers import in_range, value_in_range_or_none
from meter.models import (
    ActivePower,
    ClassifiedSample,
    Corrupt,
    Frequency,
    PowerFactor,
    PowerFactorAndTHD,
    ThreePhaseCurrent,
    ThreePhaseVoltage,
    Unclassifiable,
)

# 区间常量（闭区间）
POWER_FACTOR_RANGE = (0.0, 1.0)
FREQUENCY_RANGE = (40.0, 60.0)
THD_RANGE = (0.0, 100.0)
VOLTAGE_RANGE = (200.0, 500.0)
CURRENT_RANGE = (0.0, 100.0)
ACTIVE_POWER_RANGE = (50.0, 50000.0)
CORRUPT_THRESHOLD = 1_000_000.0

Rule = Callable[[Sequence[float]], Optional[ClassifiedSample]]


@dataclass(frozen=True)
class ClassifierRule:
    name: str
    matches_arity: Callable[[int], bool]
    apply: Rule


def _single_power_factor(v):
    if in_range(v[0], *POWER_FACTOR_RANGE):
        return PowerFactor(float(v[0]))
    return None


def _single_frequency(v):
    if in_range(v[0], *FREQUENCY_RANGE):
        return Frequency(float(v[0]))
    return None


def _pf_and_thd(v):
    # 两个字段分别校验，可能都为 None
    return PowerFactorAndTHD(
        power_factor=value_in_range_or_none(v[0], *POWER_FACTOR_RANGE),
        thd=value_in_range_or_none(v[1], *THD_RANGE),
    )


def _corrupt_triple(v):
    if any(x > CORRUPT_THRESHOLD or not math.isfinite(x) for x in v):
        return Corrupt(tuple(v))
    return None


def _three_phase(v):
    # 电压、电流两个判定都计算；同时成立时电压优先（先判电压）
    is_voltage = any(in_range(x, *VOLTAGE_RANGE) for x in v)
    is_current = all(in_range(x, *CURRENT_RANGE) for x in v)
    r, y, b = (float(x) for x in v)
    voltage = ThreePhaseVoltage(R=r, Y=y, B=b) if is_voltage else None
    current = ThreePhaseCurrent(R=r, Y=y, B=b) if is_current else None
    return voltage or current


def _active_power(v):
    for x in v:
        if in_range(x, *ACTIVE_POWER_RANGE):
            return ActivePower(float(x))
    return None


# 规则表：顺序即优先级，后面的规则默认前面的规则未命中
RULES: List[ClassifierRule] = [
    ClassifierRule("power_factor", lambda n: n == 1, _single_power_factor),
    ClassifierRule("frequency", lambda n: n == 1, _single_frequency),
    ClassifierRule("pf_thd", lambda n: n == 2, _pf_and_thd),
    ClassifierRule("corrupt", lambda n: n == 3, _corrupt_triple),
    ClassifierRule("three_phase", lambda n: n == 3, _three_phase),
    ClassifierRule("active_power", lambda n: n >= 4, _active_power),
]


def classify(values: Sequence[float], rules: Sequence[ClassifierRule] = RULES) -> ClassifiedSample:
    """按规则表对寄存器数组分类，恰好返回一个样本变体。"""
    n = len(values)
    for rule in rules:
        if not rule.matches_arity(n):
            continue
        sample = rule.apply(values)
        if sample is not None:
            return sample
    return Unclassifiable(tuple(values))


class RegisterClassifier:
    """对外的分类器对象；rules 可注入，便于测试替换"""

    def __init__(self, rules: Optional[List[ClassifierRule]] = None):
        self.rules = list(rules) if rules is not None else RULES

    def classify(self, values: Sequence[float]) -> ClassifiedSample:
        return classify(values, self.rules)
