"""Real-time event stream."""

import asyncio
import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tournament_hub.services.websocket_manager import (
    get_websocket_manager,
    is_valid_channel,
    SITE_CHANNEL,
    WEBSOCKET_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/api/ws")
async def websocket_events(websocket: WebSocket):
    """
    WebSocket endpoint for site events.

    Subscribe with ?channels=site,tournaments,tournament-<id> (defaults to
    site). Events arrive as {"channel", "event", "data"} JSON; the client
    should send "ping" periodically to stay connected.
    """
    await websocket.accept()

    raw = websocket.query_params.get("channels") or SITE_CHANNEL
    channels = [c.strip() for c in raw.split(",") if c.strip()]
    channels = [c for c in channels if is_valid_channel(c)]
    if not channels:
        await websocket.close(code=1008, reason="No valid channels")
        return

    manager = get_websocket_manager()
    await manager.connect(websocket, channels)

    try:
        # Keep connection alive and handle ping/pong with timeout
        last_activity = datetime.utcnow()

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=WEBSOCKET_TIMEOUT_SECONDS)

                last_activity = datetime.utcnow()
                await manager.update_activity(websocket)

                # Client sends "ping", server responds "pong"
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                if datetime.utcnow() - last_activity > timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS):
                    logger.info("WebSocket timeout, closing connection")
                    await websocket.close(code=1000, reason="Connection timeout")
                    break
                try:
                    await websocket.send_text("ping")
                except Exception:
                    # Connection is dead
                    break
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected from {channels}")
    except Exception as e:
        logger.error(f"WebSocket error on {channels}: {e}")
    finally:
        await manager.disconnect(websocket)
