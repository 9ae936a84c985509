# 滑动窗口 ChannelWindow / ChannelWindows

from __future__ import annotations
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Mapping, Optional

from meter.models import ClassifiedSample

DEFAULT_CAPACITY = 20


class ChannelWindow:
    """
    单个物理量的定长 FIFO 时间序列（给前端画趋势图用）：
    - labels：时间戳标签序列；
    - 每个数值标签（R/Y/B、powerFactor/thd）各一条序列，首次出现时惰性创建；
    - 超过容量从头部丢弃，长度始终 <= capacity；
    - snapshot() 读时复制，渲染方拿到的是独立副本。
    """

    def __init__(self, name: str, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity 必须 >= 1")
        self.name = name
        self.capacity = capacity
        self._labels: Deque[str] = deque(maxlen=capacity)
        self._series: Dict[str, Deque[float]] = {}

    def append(self, timestamp: str, labeled_values: Mapping[str, float]) -> None:
        for key, value in labeled_values.items():
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = deque(maxlen=self.capacity)
            series.append(value)
        self._labels.append(timestamp)

    def series(self, key: str) -> list:
        return list(self._series.get(key, ()))

    def snapshot(self) -> Dict[str, Any]:
        snap: Dict[str, Any] = {"labels": list(self._labels)}
        for key, series in self._series.items():
            snap[key] = list(series)
        return snap

    def __len__(self) -> int:
        return len(self._labels)


class ChannelWindows:
    """三组看板窗口：电压、电流、功率因数/THD"""

    # 窗口名与样本 kind 一致
    NAMES = ("voltage", "current", "pf_thd")

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.windows: Dict[str, ChannelWindow] = {
            name: ChannelWindow(name, capacity) for name in self.NAMES
        }

    @staticmethod
    def now_label() -> str:
        return datetime.now().strftime("%H:%M:%S")

    def update(self, sample: ClassifiedSample, timestamp: Optional[str] = None) -> Optional[str]:
        """样本写入对应窗口，返回窗口名；不进窗口的样本返回 None。"""
        name = sample.kind
        values = sample.window_values()
        if name not in self.windows or values is None:
            return None
        self.windows[name].append(timestamp or self.now_label(), values)
        return name

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: w.snapshot() for name, w in self.windows.items()}
