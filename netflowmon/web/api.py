# ==============================================================================
# FILE: netflowmon/web/api.py
# PURPOSE: FastAPI query endpoints, mode control and the WebSocket event feed.
# ==============================================================================
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, List

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from netflowmon.core.monitor import MonitorStartError, NetworkMonitor
from netflowmon.core.store import CONNECTION, PACKET

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: str):
        for connection in self.active_connections[:]:
            try:
                await connection.send_text(message)
            except Exception:
                self.disconnect(connection)


def encode(payload: Any) -> Any:
    """Records -> plain JSON-ready structures."""
    if isinstance(payload, (list, tuple)):
        return [encode(item) for item in payload]
    if isinstance(payload, dict):
        return {key: encode(value) for key, value in payload.items()}
    if hasattr(payload, 'to_dict'):
        return payload.to_dict()
    return payload


def message(kind: str, payload: Any) -> str:
    return json.dumps({'type': kind, 'data': encode(payload)})


def create_app(monitor: NetworkMonitor, autostart: bool = True) -> FastAPI:
    manager = ConnectionManager()

    def forward(kind: str):
        async def handler(payload):
            if manager.active_connections:
                await manager.broadcast(message(kind, payload))
        return handler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        unsubscribers = [channel.subscribe(forward(channel.name)) for channel in monitor.events.channels()]
        if autostart:
            try:
                await monitor.start()
            except MonitorStartError as e:
                logger.error("Could not start monitoring: %s", e)
        yield
        await monitor.stop()
        for unsubscribe in unsubscribers:
            unsubscribe()

    app = FastAPI(title="netflowmon", lifespan=lifespan)
    app.state.monitor = monitor
    app.state.manager = manager

    # --- Query interface ---

    @app.get("/api/stats")
    async def api_stats():
        return monitor.general_stats()

    @app.get("/api/packets")
    async def api_packets(limit: int = 50, offset: int = 0):
        return encode(monitor.store.query(PACKET, limit, offset))

    @app.get("/api/connections")
    async def api_connections(limit: int = 50, offset: int = 0):
        return encode(monitor.store.query(CONNECTION, limit, offset))

    @app.get("/api/processes")
    async def api_processes():
        return encode(monitor.store.processes())

    @app.get("/api/protocols")
    async def api_protocols():
        return monitor.store.protocol_stats()

    @app.get("/api/ports")
    async def api_ports():
        return monitor.store.port_stats()

    @app.get("/api/domains")
    async def api_domains(limit: int = 10):
        return encode(monitor.store.top_domains(limit))

    @app.get("/api/activity")
    async def api_activity(minutes: float = 5):
        return encode(monitor.store.recent_activity(minutes))

    @app.get("/api/process/{pid}")
    async def api_process(pid: int):
        proc = monitor.store.get_process(pid)
        if proc is None:
            raise HTTPException(status_code=404, detail=f"Process with PID {pid} not found.")
        return proc.to_dict()

    # --- Mode control ---

    @app.get("/api/monitor")
    async def api_monitor_status():
        return monitor.status()

    @app.post("/api/monitor/global")
    async def api_monitor_global():
        try:
            await monitor.start_global()
        except MonitorStartError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"status": "success", "message": "Global monitoring started.", **monitor.status()}

    @app.post("/api/monitor/process/{pid}")
    async def api_monitor_process(pid: int):
        try:
            await monitor.start_process(pid)
        except MonitorStartError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"status": "success", "message": f"Monitoring started for process {pid}.", **monitor.status()}

    @app.post("/api/monitor/stop")
    async def api_monitor_stop():
        await monitor.stop()
        return {"status": "success", "message": "Monitoring stopped.", **monitor.status()}

    # --- Event feed ---

    async def send_initial_data(websocket: WebSocket):
        await websocket.send_text(message('stats', monitor.general_stats()))
        await websocket.send_text(message('protocols', monitor.store.protocol_stats()))
        await websocket.send_text(message('ports', monitor.store.port_stats()))
        await websocket.send_text(message('domains', monitor.store.top_domains(10)))

    async def handle_command(websocket: WebSocket, raw: str):
        try:
            command = json.loads(raw)
        except json.JSONDecodeError:
            await websocket.send_text(message('error', {'message': 'Invalid JSON command.'}))
            return
        action = command.get('action') if isinstance(command, dict) else None
        try:
            if action == 'startGlobalMonitoring':
                await monitor.start_global()
            elif action == 'startProcessMonitoring':
                await monitor.start_process(int(command['pid']))
            elif action == 'getProcesses':
                await websocket.send_text(message('processesList', await monitor.list_processes()))
                return
            elif action == 'getProcessInfo':
                info = await monitor.process_info(int(command['pid']))
                await websocket.send_text(message('processInfo', info))
                return
            else:
                await websocket.send_text(message('error', {'message': f"Unknown action: {action}"}))
                return
        except (KeyError, TypeError, ValueError):
            await websocket.send_text(message('error', {'message': f"{action} needs an integer pid."}))
            return
        except MonitorStartError as e:
            await websocket.send_text(message('error', {'message': str(e)}))
            return
        await websocket.send_text(message('status', monitor.status()))

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await manager.connect(websocket)
        try:
            await send_initial_data(websocket)
            while True:
                await handle_command(websocket, await websocket.receive_text())
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app
