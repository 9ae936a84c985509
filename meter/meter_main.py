# meter_main.py
"""
=========================================
主程序入口
=========================================

功能说明：
  - 读取 config/meter.yaml（环境变量覆盖）
  - 组装滑动窗口、连接中心、遥测管线、可选的 MySQL 落库
  - 启动 WebSocket 服务与遥测来源（合成数据 / 文件回放）
  - 支持 Ctrl+C 优雅退出

运行：python -m meter.meter_main
"""

from __future__ import annotations
import asyncio
import contextlib
import signal
from typing import Optional

import mysql.connector

from commons.base_logger import BaseLogger
from dao.power_data_dao import PowerDataDao
from meter.channel_window import ChannelWindows
from meter.errors import PersistenceError
from meter.persistence_sink import PersistenceSink
from meter.pipeline import TelemetryPipeline
from meter.setting import MeterSettings, SourceSettings, load_settings
from meter.sources import ReplayFileSource, SyntheticSource, TelemetrySource, pump
from meter_socket.hub import BroadcastHub
from meter_socket.ws_runner import build_ws_app, start_ws_background, stop_ws_background

_log = BaseLogger(name="meter_main", to_file=True)


def build_source(cfg: SourceSettings) -> Optional[TelemetrySource]:
    interval_s = cfg.interval_ms / 1000.0
    if cfg.kind == "synthetic":
        return SyntheticSource(interval_s=interval_s, device_id=cfg.device_id)
    if cfg.kind == "replay":
        if not cfg.replay_path:
            raise ValueError("source.kind=replay 需要配置 replay_path")
        return ReplayFileSource(cfg.replay_path, interval_s=interval_s)
    if cfg.kind == "none":
        return None
    raise ValueError(f"未知的遥测来源类型: {cfg.kind!r}")


def build_dao(settings: MeterSettings) -> Optional[PowerDataDao]:
    """落库可选：未启用或建表失败时返回 None，服务照常运行"""
    if not settings.mysql.enabled:
        _log.log_info("未启用 MySQL 落库")
        return None
    dao = PowerDataDao(**settings.mysql.connect_kwargs())
    try:
        dao.ensure_table()
    except (PersistenceError, mysql.connector.Error) as e:
        _log.log_error(f"power_data 建表失败，落库已禁用: {e}", exc_info=False)
        return None
    return dao


async def main(settings: Optional[MeterSettings] = None):
    """
    主入口：
      1. 注册退出信号 (SIGINT / SIGTERM)
      2. 组装窗口 / hub / 管线 / 落库
      3. 启动 WebSocket 服务与遥测来源
      4. 等待退出信号后按相反顺序收尾
    """
    settings = settings or load_settings()

    stop_evt = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):  # Windows 下可能不支持
            loop.add_signal_handler(sig, stop_evt.set)

    windows = ChannelWindows(capacity=settings.pipeline.window_capacity)
    hub = BroadcastHub(settings.hub, window_provider=windows.snapshot)

    dao = await asyncio.to_thread(build_dao, settings)
    sink = PersistenceSink(dao, max_concurrency=settings.mysql.pool_size) if dao is not None else None

    pipeline = TelemetryPipeline(
        broadcast=hub.broadcast,
        windows=windows,
        sink=sink,
        queue_cap=settings.pipeline.queue_cap,
    )
    await pipeline.start()

    app = build_ws_app(hub, pipeline, windows, settings.server, dao=dao)
    ws_handle = await start_ws_background(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
        ws_ping_interval=settings.hub.heartbeat_s,
    )

    source = build_source(settings.source)
    pump_task = None
    if source is not None:
        pump_task = asyncio.create_task(pump(source, pipeline, stop_evt), name="telemetry-source")
    else:
        _log.log_warning("未配置遥测来源，仅接受 /api/telemetry 推送")

    try:
        await stop_evt.wait()
    finally:
        if source is not None:
            source.close()
        if pump_task is not None:
            pump_task.cancel()
            await asyncio.gather(pump_task, return_exceptions=True)
        await pipeline.stop()
        await hub.close_all()
        if sink is not None:
            await sink.drain()
        await stop_ws_background(ws_handle)
        _log.log_info("bye")


def run() -> None:
    """同步入口：asyncio.run(main())，Ctrl+C 安静退出"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
