"""
Real-time WebSocket route for SupportDesk Chat.

Frames in both directions are `{"event": <name>, "data": {...}}`. A new
connection is unauthenticated until it sends `staff_authenticate` or
`customer_join`.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.realtime.commands import CommandError, parse_command
from api.realtime.connection_manager import Connection

from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    services = get_services()
    coordinator = services.coordinator
    manager = services.connections

    await websocket.accept()
    connection = Connection(transport=websocket)
    manager.register(connection)

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await manager.send(connection, "error", {"error": "Invalid JSON"})
                continue
            if not isinstance(frame, dict):
                await manager.send(connection, "error", {"error": "Frames must be JSON objects"})
                continue

            try:
                command = parse_command(frame.get("event"), frame.get("data"))
            except CommandError as e:
                await manager.send(connection, "error", {"error": str(e)})
                continue

            try:
                await coordinator.dispatch(connection, command)
            except Exception as e:
                logger.error(f"WS handler error for {command.event}: {e}", exc_info=True)
                await manager.send(connection, "error", {"error": "Internal error"})

    except WebSocketDisconnect:
        logger.info(f"WS client closed: {connection.id}")
    finally:
        await coordinator.disconnect(connection)
