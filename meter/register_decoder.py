# ────────────────────────────────────────────────────────────────
# 模块用途：从原始遥测消息中提取数值寄存器数组
# 说明：
#   - 原始消息可能是 str / bytes / 已解析的 JSON 对象；
#   - JSON 包装时取 data 字段，{"type":"Buffer","data":[...]} 按 UTF-8 还原；
#   - 显式文法：定位最内层方括号 → 逗号切分 → 去空白 → nan 记 0.0 → 解析十进制数；
#   - 任一 token 非法即整条消息解码失败，不做隐式转换。
# ────────────────────────────────────────────────────────────────
from __future__ import annotations
import json
import re
from typing import Any

from meter.errors import DecodeError, NoRegisterData
from meter.models import RegisterArray

# 带符号十进制数（允许指数），不接受 inf / NaN 之类的写法
_NUMBER_RX = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
NAN_TOKEN = "nan"


def is_buffer_object(value: Any) -> bool:
    """是否为 Node 风格的 Buffer 序列化对象：{"type": "Buffer", "data": [int, ...]}"""
    return (
        isinstance(value, dict)
        and value.get("type") == "Buffer"
        and isinstance(value.get("data"), list)
    )


def buffer_to_text(value: dict) -> str:
    """Buffer 对象 → UTF-8 文本；字节值非法或解码失败抛 DecodeError。"""
    try:
        return bytes(value["data"]).decode("utf-8")
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Buffer 数据无法解码为 UTF-8: {e}") from e


def payload_text(raw: Any) -> str:
    """
    原始消息 → 待提取寄存器的文本。
    - bytes：按 UTF-8 解码；
    - str：若是 JSON 对象则取其 data 字段，否则原样使用；
    - dict：取 data 字段（Buffer 还原；非字符串则 json.dumps）。
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"二进制载荷不是合法 UTF-8: {e}") from e

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise DecodeError("收到空消息")
        if not text.startswith("{"):
            return text
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise DecodeError(f"载荷不是合法 JSON: {e}") from e

    if not isinstance(raw, dict):
        raise DecodeError(f"无法转换为文本的载荷类型: {type(raw).__name__}")

    data = raw.get("data")
    if data is None:
        raise DecodeError("JSON 载荷缺少 data 字段")
    if is_buffer_object(data):
        data = buffer_to_text(data)
    if not isinstance(data, str):
        # 与看板脚本一致：非字符串的 data 序列化后再提取
        data = json.dumps(data)
    if not data.strip():
        raise DecodeError("data 字段为空")
    return data


def parse_token(token: str) -> float:
    t = token.strip()
    # 固件 printf 可能输出 -nan / +nan
    if t.lstrip("+-") == NAN_TOKEN:
        return 0.0
    if not _NUMBER_RX.match(t):
        raise DecodeError(f"非法数值 token: {token!r}")
    return float(t)


class RegisterDecoder:
    """寄存器解码器（纯函数，无状态）"""

    def decode(self, raw: Any) -> RegisterArray:
        return self.decode_text(payload_text(raw))

    @staticmethod
    def decode_text(text: str) -> RegisterArray:
        # 最内层：第一个 "[" 之后的第一个 "]"，以及它之前最近的 "["
        first = text.find("[")
        close = text.find("]", first) if first != -1 else -1
        if close == -1:
            raise NoRegisterData(f"消息中没有寄存器列表: {text[:64]!r}")

        start = text.rfind("[", first, close)
        body = text[start + 1:close]
        if not body.strip():
            raise NoRegisterData("寄存器列表为空")
        return tuple(parse_token(tok) for tok in body.split(","))
