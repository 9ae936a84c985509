# ────────────────────────────────────────────────────────────────
# 模块用途：启动 FastAPI WebSocket 服务，推送电表实时数据
# 说明：
#   - /ws（以及根路径 /）为观察者 WebSocket，生命周期交给 BroadcastHub；
#   - 管线每处理一条遥测就经 hub.broadcast() 推给所有在线连接；
#   - /api/telemetry 允许外部系统直接推送一条原始消息；
#   - /api/windows 返回当前滑动窗口快照，/api/history 返回最近落库记录；
#   - 静态页面挂在 /public，/ 与 /dashboard 返回对应 html（不存在时返回 JSON 提示）。
# ────────────────────────────────────────────────────────────────

from __future__ import annotations
import asyncio
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import mysql.connector
import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.staticfiles import StaticFiles
from starlette.websockets import WebSocketState

from commons.base_logger import BaseLogger
from dao.power_data_dao import PowerDataDao
from meter.channel_window import ChannelWindows
from meter.errors import ObserverDisconnected, PersistenceError
from meter.pipeline import TelemetryPipeline
from meter.setting import ServerSettings
from meter_socket.adapters.envelope import dumps, ping_envelope
from meter_socket.hub import BroadcastHub
from tools.config_loader import resolve_path

_log = BaseLogger(name="ws_runner")


class StarletteTransport:
    """
    Starlette WebSocket → ObserverTransport 适配。
    ASGI 不暴露协议层 ping 帧：协议层心跳由 uvicorn 的 ws_ping_interval 负责，
    这里的 ping() 发送应用层 {"type":"ping"} 帧。
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def accept(self) -> None:
        await self.websocket.accept()

    async def receive(self) -> Union[str, bytes]:
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise ObserverDisconnected(f"code={message.get('code')}")
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def send_text(self, text: str) -> None:
        await self.websocket.send_text(text)

    async def ping(self) -> None:
        await self.websocket.send_text(dumps(ping_envelope()))

    async def close(self, code: int = 1000) -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close(code)


# ────────────────────────────────────────────────────────────────
# 构建 FastAPI 实例
# ────────────────────────────────────────────────────────────────
def build_ws_app(
    hub: BroadcastHub,
    pipeline: TelemetryPipeline,
    windows: ChannelWindows,
    settings: Optional[ServerSettings] = None,
    dao: Optional[PowerDataDao] = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    app = FastAPI(title="Meter Telemetry Hub", version="1.0.0")

    static_dir = Path(resolve_path(settings.static_dir))
    if static_dir.exists():
        app.mount("/public", StaticFiles(directory=str(static_dir)), name="public")
        _log.log_info(f"静态资源目录: {static_dir}")
    else:
        _log.log_warning(f"静态资源目录不存在: {static_dir}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    def _page(name: str):
        page = static_dir / name
        if page.exists():
            return FileResponse(str(page))
        return JSONResponse({"msg": f"{name} not found, visit /public to list files."})

    @app.get("/")
    async def _index():
        return _page("index.html")

    @app.get("/dashboard")
    async def _dashboard():
        return _page("dashboard.html")

    @app.get("/favicon.ico")
    async def _favicon():
        return Response(status_code=204)

    @app.get("/healthz")
    async def _h():
        """健康检查：在线连接数 + 管线计数"""
        return {
            "ok": True,
            "observers": hub.count(),
            "pipeline": dict(pipeline.stats),
            "queue_dropped": pipeline.queue_dropped,
        }

    @app.get("/api/windows")
    async def _windows():
        return windows.snapshot()

    @app.get("/api/history")
    async def _history(limit: int = 20):
        if dao is None:
            return JSONResponse({"error": "persistence disabled"}, status_code=503)
        try:
            records = await asyncio.to_thread(dao.latest, max(1, min(limit, 500)))
        except (PersistenceError, mysql.connector.Error) as e:
            _log.log_error(f"查询历史记录失败: {e}", exc_info=False)
            return JSONResponse({"error": str(e)}, status_code=503)
        return [r.to_document() for r in records]

    @app.post("/api/telemetry")
    async def _telemetry(request: Request):
        body = await request.body()
        if not body.strip():
            return JSONResponse({"error": "empty body"}, status_code=400)
        await pipeline.push_raw(body)
        return JSONResponse({"queued": True}, status_code=202)

    async def _observer(websocket: WebSocket):
        await hub.serve(StarletteTransport(websocket))

    app.add_api_websocket_route("/ws", _observer)
    app.add_api_websocket_route("/", _observer)

    return app


# ────────────────────────────────────────────────────────────────
# 启动与停止：供 meter_main 调用
# ────────────────────────────────────────────────────────────────
@dataclass
class WsServerHandle:
    server: uvicorn.Server
    task: asyncio.Task


async def start_ws_background(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 8080,
    log_level: str = "info",
    ws_ping_interval: Optional[float] = 5.0,
) -> WsServerHandle:
    """后台启动服务，不阻塞主协程；返回句柄供 stop。"""
    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        loop="asyncio",
        log_level=log_level,
        ws_ping_interval=ws_ping_interval,
    )
    server = uvicorn.Server(config)

    async def _serve():
        try:
            await server.serve()
        except SystemExit:
            _log.log_error(f"端口 {port} 被占用，请更换端口或停止其它进程", exc_info=False)

    task = asyncio.create_task(_serve(), name=f"meter-ws:{port}")
    await asyncio.sleep(0.1)
    ip = "127.0.0.1" if host in ("0.0.0.0", "localhost") else host
    _log.log_info(f"WebSocket 服务已启动: ws://{ip}:{port}/ws  看板: http://{ip}:{port}/dashboard")
    return WsServerHandle(server, task)


async def stop_ws_background(handle: Optional[WsServerHandle]) -> None:
    if not handle:
        return
    handle.server.should_exit = True
    with suppress(asyncio.CancelledError):
        await handle.task
