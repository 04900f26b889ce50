"""Realtime voice relay WebSocket."""

import logging

from fastapi import APIRouter, WebSocket

from app.services.realtime_relay import RealtimeRelay

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Realtime"])


@router.websocket("/realtime")
async def realtime_relay(websocket: WebSocket) -> None:
    """Bridge the browser to an OpenAI Realtime session.

    The first client frame must be ``{"type": "init"}``; see
    ``app.services.realtime_relay`` for the full frame protocol.
    """
    await websocket.accept()
    logger.info("Client connected to OpenAI Realtime relay")
    await RealtimeRelay(websocket).run()
