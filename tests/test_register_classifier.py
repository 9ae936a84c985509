import math

import pytest

from meter.models import (
    ActivePower,
    Corrupt,
    Frequency,
    PowerFactor,
    PowerFactorAndTHD,
    ThreePhaseCurrent,
    ThreePhaseVoltage,
    Unclassifiable,
)
from meter.register_classifier import RULES, ClassifierRule, RegisterClassifier, classify


@pytest.mark.parametrize("values,expected", [
    ([0.85], PowerFactor(0.85)),
    ([0.0], PowerFactor(0.0)),
    ([1.0], PowerFactor(1.0)),
    ([50.0], Frequency(50.0)),
    ([40.0], Frequency(40.0)),
    ([60.0], Frequency(60.0)),
    ([1.5], Unclassifiable((1.5,))),
    ([61.0], Unclassifiable((61.0,))),
])
def test_single_value(values, expected):
    assert classify(values) == expected


@pytest.mark.parametrize("values,pf,thd", [
    ([0.9, 3.2], 0.9, 3.2),
    ([1.5, 200], None, None),
    ([0.5, 150], 0.5, None),
    ([-0.1, 100], None, 100.0),
])
def test_pf_and_thd(values, pf, thd):
    assert classify(values) == PowerFactorAndTHD(power_factor=pf, thd=thd)


def test_three_phase_voltage():
    assert classify([230, 229, 231]) == ThreePhaseVoltage(R=230, Y=229, B=231)


def test_voltage_needs_only_one_phase_in_range():
    """至少一个值落在 [200,500] 即判为电压"""
    assert classify([150, 220, 180]) == ThreePhaseVoltage(R=150, Y=220, B=180)


def test_three_phase_current():
    assert classify([10, 20, 30]) == ThreePhaseCurrent(R=10, Y=20, B=30)


def test_three_phase_neither():
    assert classify([150, 160, 170]) == Unclassifiable((150.0, 160.0, 170.0))


@pytest.mark.parametrize("values", [
    [2_000_000, 1, 2],
    [230, float("nan"), 231],
    [1, 2, float("inf")],
])
def test_corrupt_triple(values):
    sample = classify(values)
    assert isinstance(sample, Corrupt)
    assert not sample.is_valid


def test_corrupt_short_circuits_voltage_check():
    """超大值优先判为 Corrupt，即使其它值像电压"""
    assert isinstance(classify([230, 231, 1_000_001]), Corrupt)


def test_active_power_first_in_range_wins():
    assert classify([5, 100, 200, 300]) == ActivePower(100)


def test_active_power_not_found():
    assert classify([1, 2, 3, 60000]) == Unclassifiable((1.0, 2.0, 3.0, 60000.0))


def test_every_sample_is_exactly_one_variant():
    """分类是纯函数：同样输入多次得到相同结果"""
    for values in ([0.5], [0.9, 3.2], [230, 229, 231], [5, 100, 200, 300]):
        assert classify(values) == classify(list(values))


def test_rule_order_is_priority():
    """规则表顺序：单值先判功率因数再判频率"""
    names = [r.name for r in RULES]
    assert names.index("power_factor") < names.index("frequency")
    assert names.index("corrupt") < names.index("three_phase")


def test_custom_rules_injected():
    rules = [ClassifierRule("always_pf", lambda n: True, lambda v: PowerFactor(0.5))]
    assert RegisterClassifier(rules).classify([999, 999]) == PowerFactor(0.5)
    assert RegisterClassifier().classify([0.85]) == PowerFactor(0.85)


def test_sample_to_dict_carries_kind():
    d = classify([230, 229, 231]).to_dict()
    assert d == {"kind": "voltage", "R": 230.0, "Y": 229.0, "B": 231.0}
    assert not math.isnan(d["R"])
