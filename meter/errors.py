# 异常分类：全部在发生处捕获并记录日志，不向上冒泡导致进程退出
from __future__ import annotations


class TelemetryError(Exception):
    """遥测链路异常基类"""


class DecodeError(TelemetryError):
    """载荷无法转为文本 / 不是合法 JSON / 数值 token 非法：丢弃该条消息"""


class NoRegisterData(DecodeError):
    """载荷中找不到方括号数值列表：丢弃该条消息，不重试"""


class ObserverConnectionError(TelemetryError):
    """观察者连接收发失败：连接进入 CLOSING 并移出活跃集合"""


class ObserverDisconnected(ObserverConnectionError):
    """对端正常断开（不是故障，但同样结束该连接）"""


class PersistenceError(TelemetryError):
    """持久化写入失败：记录日志，样本丢失，不重试"""
