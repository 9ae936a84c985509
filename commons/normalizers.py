# -*- coding: utf-8 -*-
# commons/normalizers.py
from __future__ import annotations

"""
normalizers
-----------
通用“数值判定 / 字段级转换”函数库。
判定函数：func(value, lo, hi) -> bool；转换函数：func(value) -> new_value。
"""

import math
from typing import Any, Callable, Optional


def is_finite_number(x: Any) -> bool:
    """int/float 且非 NaN/Inf（bool 不算数值）。"""
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return False
    return math.isfinite(x)


def in_range(x: Any, lo: float, hi: float) -> bool:
    """闭区间判定 lo <= x <= hi；NaN 永远返回 False。"""
    return is_finite_number(x) and lo <= x <= hi


def value_in_range_or_none(x: Any, lo: float, hi: float) -> Optional[float]:
    """在区间内返回 float(x)，否则 None。"""
    return float(x) if in_range(x, lo, hi) else None


def to_float_or_none(x: Any) -> Optional[float]:
    """将值转换为 float；空串/None/非法值返回 None。"""
    try:
        return float(x) if x is not None and str(x).strip() != "" else None
    except Exception:
        return None


def default_if_none(default: float) -> Callable[[Any], float]:
    """
    生成转换器：None/空串/非法值 -> default，其余转 float。
    用于持久化记录的字段兜底（功率因数 1.0、THD 0.0 等）。
    """
    def _convert(x: Any) -> float:
        v = to_float_or_none(x)
        return default if v is None else v
    return _convert


def phases_or_zero(x: Any) -> dict:
    """
    三相字典兜底：None -> {"R":0,"Y":0,"B":0}；
    缺失相或非法值按 0.0 处理。
    """
    src = x if isinstance(x, dict) else {}
    return {p: default_if_none(0.0)(src.get(p)) for p in ("R", "Y", "B")}
