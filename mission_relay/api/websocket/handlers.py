"""
WebSocket endpoint for the mission relay
Registers viewer channels with the broadcast hub for their lifetime
"""

import logging

from fastapi import WebSocket, WebSocketDisconnect

from .manager import ConnectionManager

logger = logging.getLogger(__name__)


async def websocket_route(websocket: WebSocket, manager: ConnectionManager):
    """
    FastAPI WebSocket route handler

    The push channel is one-way (relay to viewer). Inbound frames are read
    only to notice the disconnect and are otherwise ignored.
    """
    try:
        await manager.connect(websocket)
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            logger.debug("Ignoring inbound frame on push channel")
    except WebSocketDisconnect:
        logger.debug("Viewer channel closed")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.unregister(websocket)
