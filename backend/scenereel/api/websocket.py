"""WebSocket progress feed for render jobs.

This module provides:
- WebSocketManager: connections grouped by render id
- RenderProgressNotifier: pushes progress/complete/error/cancelled messages
- the /renders/{render_id}/ws endpoint, which sends the job's current
  snapshot on connect and then relays notifications until the client leaves
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from scenereel.exceptions import CANCELLED_MESSAGE
from scenereel.render.job_store import RenderJob

router = APIRouter()
logger = logging.getLogger(__name__)


class WebSocketManager:
    """Tracks the clients watching each render job."""

    def __init__(self):
        # render_id -> connected websockets
        self._connections: dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, render_id: str) -> None:
        await websocket.accept()
        self._connections.setdefault(render_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket, render_id: str) -> None:
        sockets = self._connections.get(render_id)
        if sockets is None:
            return
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            del self._connections[render_id]

    async def broadcast(self, render_id: str, message: dict[str, Any]) -> None:
        """Send a message to every client watching a job, dropping dead ones."""
        disconnected = []
        for websocket in list(self._connections.get(render_id, [])):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping websocket for {render_id}: {e}")
                disconnected.append(websocket)

        for websocket in disconnected:
            self.disconnect(websocket, render_id)

    def get_connection_count(self, render_id: str) -> int:
        return len(self._connections.get(render_id, []))


class RenderProgressNotifier:
    """Render lifecycle notifications over WebSocket."""

    def __init__(self, manager: WebSocketManager):
        self._manager = manager

    async def notify_progress(
        self,
        job_id: str,
        percent: float,
        status: str,
        current_step: Optional[str] = None,
    ) -> None:
        await self._manager.broadcast(
            job_id, create_progress_message(job_id, status, percent, current_step)
        )

    async def notify_complete(self, job_id: str, output_url: str) -> None:
        await self._manager.broadcast(job_id, create_complete_message(job_id, output_url))

    async def notify_error(
        self,
        job_id: str,
        error_message: str,
        error_code: Optional[str] = None,
    ) -> None:
        await self._manager.broadcast(
            job_id, create_error_message(job_id, error_message, error_code)
        )

    async def notify_cancelled(self, job_id: str) -> None:
        await self._manager.broadcast(job_id, create_cancelled_message(job_id))


def create_progress_message(
    render_id: str,
    status: str,
    percent: float,
    current_step: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "type": "progress",
        "render_id": render_id,
        "status": status,
        "percent": percent,
        "current_step": current_step,
    }


def create_complete_message(render_id: str, output_url: str) -> dict[str, Any]:
    return {
        "type": "complete",
        "render_id": render_id,
        "status": "completed",
        "percent": 100,
        "output_url": output_url,
    }


def create_error_message(
    render_id: str,
    error_message: str,
    error_code: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "type": "error",
        "render_id": render_id,
        "status": "failed",
        "error_message": error_message,
        "error_code": error_code,
    }


def create_cancelled_message(render_id: str) -> dict[str, Any]:
    return {
        "type": "cancelled",
        "render_id": render_id,
        "status": "failed",
        "error_message": CANCELLED_MESSAGE,
    }


def create_snapshot_message(job: RenderJob) -> dict[str, Any]:
    """Current state of a job, sent once when a client connects."""
    return {"type": "snapshot", "render_id": job.id, **job.to_dict()}


@router.websocket("/renders/{render_id}/ws")
async def watch_render(websocket: WebSocket, render_id: str) -> None:
    service = websocket.app.state.render_service
    manager: WebSocketManager = websocket.app.state.websocket_manager

    if service.store.get(render_id) is None:
        await websocket.close(code=4404, reason="Render job not found")
        return

    # Register before reading the snapshot so no broadcast falls in between
    await manager.connect(websocket, render_id)
    try:
        job = service.store.get(render_id)
        if job is None:
            await websocket.close(code=4404, reason="Render job not found")
            return
        await websocket.send_json(create_snapshot_message(job))
        while True:
            # Clients only listen; inbound frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket, render_id)
