# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：集中管理运行配置（YAML → 环境变量覆盖 → 不可变 dataclass）
# 说明：
#   - 默认读取 config/meter.yaml（METER_CONFIG 可指定其它文件）；
#   - 每个字段都可被同名环境变量覆盖，便于容器部署；
#   - 上层只依赖 MeterSettings，不直接感知键名。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from tools.config_loader import load_config

OVERFLOW_POLICIES = ("drop_oldest", "disconnect")


def _pick(section: Dict[str, Any], key: str, env: str, default: Any) -> Any:
    """取值优先级：环境变量 > YAML > 默认值。"""
    raw = os.getenv(env)
    if raw is not None:
        return raw
    value = section.get(key)
    return default if value is None else value


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8080
    static_dir: str = "public"
    log_level: str = "info"


@dataclass(frozen=True)
class HubSettings:
    """连接管理参数（毫秒统一换算为秒使用）"""
    heartbeat_ms: int = 5000
    liveness_ms: int = 2000
    outbound_queue_cap: int = 256
    overflow_policy: str = "drop_oldest"
    send_window_on_open: bool = True

    def __post_init__(self):
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(
                f"overflow_policy 必须是 {OVERFLOW_POLICIES} 之一，实际: {self.overflow_policy!r}"
            )
        if self.outbound_queue_cap < 1:
            raise ValueError("outbound_queue_cap 必须 >= 1")

    @property
    def heartbeat_s(self) -> float:
        return self.heartbeat_ms / 1000.0

    @property
    def liveness_s(self) -> float:
        return self.liveness_ms / 1000.0


@dataclass(frozen=True)
class PipelineSettings:
    queue_cap: int = 1024
    window_capacity: int = 20


@dataclass(frozen=True)
class SourceSettings:
    kind: str = "synthetic"
    interval_ms: int = 5000
    replay_path: str = ""
    device_id: str = "meter-01"


@dataclass(frozen=True)
class MySQLSettings:
    enabled: bool = False
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = "root"
    database: str = "meter"
    pool_size: int = 4

    def connect_kwargs(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "pool_size": self.pool_size,
        }


@dataclass(frozen=True)
class MeterSettings:
    server: ServerSettings = field(default_factory=ServerSettings)
    hub: HubSettings = field(default_factory=HubSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    source: SourceSettings = field(default_factory=SourceSettings)
    mysql: MySQLSettings = field(default_factory=MySQLSettings)


def load_settings(file_path: Optional[str] = None) -> MeterSettings:
    """从 YAML + 环境变量构造 MeterSettings。"""
    try:
        cfg = load_config(file_path=file_path)
    except FileNotFoundError:
        # 没有配置文件时全部走默认值 + 环境变量
        cfg = {}

    s = cfg.get("server") or {}
    server = ServerSettings(
        host=str(_pick(s, "host", "METER_HOST", "0.0.0.0")),
        port=int(_pick(s, "port", "METER_PORT", 8080)),
        static_dir=str(_pick(s, "static_dir", "METER_STATIC_DIR", "public")),
        log_level=str(_pick(s, "log_level", "METER_SERVER_LOG_LEVEL", "info")),
    )

    h = cfg.get("hub") or {}
    hub = HubSettings(
        heartbeat_ms=int(_pick(h, "heartbeat_ms", "METER_HEARTBEAT_MS", 5000)),
        liveness_ms=int(_pick(h, "liveness_ms", "METER_LIVENESS_MS", 2000)),
        outbound_queue_cap=int(_pick(h, "outbound_queue_cap", "METER_OUTBOUND_QUEUE_CAP", 256)),
        overflow_policy=str(_pick(h, "overflow_policy", "METER_OVERFLOW_POLICY", "drop_oldest")),
        send_window_on_open=_as_bool(_pick(h, "send_window_on_open", "METER_SEND_WINDOW_ON_OPEN", True)),
    )

    p = cfg.get("pipeline") or {}
    pipeline = PipelineSettings(
        queue_cap=int(_pick(p, "queue_cap", "METER_QUEUE_CAP", 1024)),
        window_capacity=int(_pick(p, "window_capacity", "METER_WINDOW_CAPACITY", 20)),
    )

    src = cfg.get("source") or {}
    source = SourceSettings(
        kind=str(_pick(src, "kind", "METER_SOURCE", "synthetic")),
        interval_ms=int(_pick(src, "interval_ms", "METER_SOURCE_INTERVAL_MS", 5000)),
        replay_path=str(_pick(src, "replay_path", "METER_REPLAY_PATH", "")),
        device_id=str(_pick(src, "device_id", "METER_DEVICE_ID", "meter-01")),
    )

    m = cfg.get("mysqlconfig") or {}
    mysql = MySQLSettings(
        enabled=_as_bool(_pick(m, "enabled", "MYSQL_ENABLED", False)),
        host=str(_pick(m, "host", "MYSQL_HOST", "localhost")),
        port=int(_pick(m, "port", "MYSQL_PORT", 3306)),
        user=str(_pick(m, "user", "MYSQL_USER", "root")),
        password=str(_pick(m, "password", "MYSQL_PASSWORD", "root")),
        database=str(_pick(m, "database", "MYSQL_DATABASE", "meter")),
        pool_size=int(_pick(m, "pool_size", "MYSQL_POOL_SIZE", 4)),
    )

    return MeterSettings(server=server, hub=hub, pipeline=pipeline, source=source, mysql=mysql)
