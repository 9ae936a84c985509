from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Dict, Union

from meter.errors import DecodeError
from meter.models import ClassifiedSample
from meter.register_decoder import buffer_to_text, is_buffer_object

# =========================
# 信封类型：{"type": ..., "data": ...}
# =========================

ECHO = "echo"        # 回显给发送方
IOT = "iot"          # 原始遥测转发给所有观察者
SAMPLE = "sample"    # 分类结果
WINDOW = "window"    # 新连接的窗口快照
PING = "ping"        # 应用层心跳

Envelope = Dict[str, Any]


def _json_default(o: Any):
    if isinstance(o, (datetime, date)):
        return o.isoformat()
    if isinstance(o, (bytes, bytearray)):
        return bytes(o).decode("utf-8", errors="replace")
    return str(o)  # 兜底：转字符串，永不抛错


def dumps(envelope: Envelope) -> str:
    return json.dumps(envelope, ensure_ascii=False, default=_json_default)


def envelope(kind: str, data: Any) -> Envelope:
    return {"type": kind, "data": data}


def echo_envelope(message: Any) -> Envelope:
    return envelope(ECHO, message)


def iot_envelope(text: str) -> Envelope:
    return envelope(IOT, text)


def sample_envelope(sample: ClassifiedSample) -> Envelope:
    return envelope(SAMPLE, sample.to_dict())


def window_envelope(snapshot: Dict[str, Any]) -> Envelope:
    return envelope(WINDOW, snapshot)


def ping_envelope() -> Envelope:
    return envelope(PING, None)


def parse_inbound(raw: Union[str, bytes]) -> Dict[str, Any]:
    """
    观察者上行消息：JSON 对象（字段 message / data）。
    - bytes 先按 UTF-8 解码；
    - data 为 Buffer 形状时还原为文本；
    - 非 JSON / 非对象抛 DecodeError。
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"上行消息不是合法 UTF-8: {e}") from e
    if not raw or not raw.strip():
        raise DecodeError("收到空消息")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"上行消息不是合法 JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise DecodeError(f"上行消息必须是 JSON 对象，实际: {type(parsed).__name__}")

    if is_buffer_object(parsed.get("data")):
        parsed["data"] = buffer_to_text(parsed["data"])
    return parsed
