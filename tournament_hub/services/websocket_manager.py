"""
WebSocket connection manager for real-time site events.

Clients subscribe to channels (``site``, ``tournaments``, ``tournament-<id>``)
and receive every event broadcast on them. Delivery is best effort: a failed
send drops that connection and never fails the operation that triggered it.
"""

import asyncio
import json
import logging
from typing import Dict, Set, Optional, Iterable, Any
from datetime import datetime, timedelta
from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Timeout for WebSocket connections (30 seconds of inactivity)
WEBSOCKET_TIMEOUT_SECONDS = 30

SITE_CHANNEL = "site"
TOURNAMENTS_CHANNEL = "tournaments"
TOURNAMENT_CHANNEL_PREFIX = "tournament-"

MAINTENANCE_CHANGED = "maintenance_changed"
ANNOUNCEMENT_CHANGED = "announcement_changed"
TEAMS_CHANGED = "teams_changed"
TOURNAMENTS_CHANGED = "tournaments_changed"


def tournament_channel(tournament_id: int) -> str:
    """Channel carrying team list updates for one tournament."""
    return f"{TOURNAMENT_CHANNEL_PREFIX}{tournament_id}"


def is_valid_channel(channel: str) -> bool:
    if channel in (SITE_CHANNEL, TOURNAMENTS_CHANNEL):
        return True
    suffix = channel[len(TOURNAMENT_CHANNEL_PREFIX):]
    return channel.startswith(TOURNAMENT_CHANNEL_PREFIX) and suffix.isascii() and suffix.isdigit()


class WebSocketManager:
    """Manages WebSocket subscriptions and channel broadcasts."""

    def __init__(self):
        """Initialize the WebSocket manager."""
        # Dictionary mapping channel name to set of subscribed connections
        self.channels: Dict[str, Set[WebSocket]] = {}
        # Dictionary mapping WebSocket to last activity timestamp
        self.connection_timestamps: Dict[WebSocket, datetime] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, channels: Iterable[str]):
        """
        Subscribe a connection to channels.

        Args:
            websocket: Accepted WebSocket connection
            channels: Channel names; invalid names are skipped
        """
        async with self._lock:
            subscribed = []
            for channel in channels:
                if not is_valid_channel(channel):
                    continue
                self.channels.setdefault(channel, set()).add(websocket)
                subscribed.append(channel)
            self.connection_timestamps[websocket] = datetime.utcnow()
        logger.info(f"WebSocket subscribed to {subscribed}")

    async def disconnect(self, websocket: WebSocket):
        """Remove a connection from every channel."""
        async with self._lock:
            self._remove_locked(websocket)
        logger.info("WebSocket disconnected")

    def _remove_locked(self, websocket: WebSocket):
        for channel in list(self.channels):
            self.channels[channel].discard(websocket)
            # Clean up empty sets
            if not self.channels[channel]:
                del self.channels[channel]
        self.connection_timestamps.pop(websocket, None)

    async def broadcast(self, channel: str, event: str, data: Optional[Dict[str, Any]] = None) -> int:
        """
        Send an event to every connection subscribed to a channel.

        Args:
            channel: Channel name
            event: Event name (e.g. maintenance_changed)
            data: JSON-serializable payload

        Returns:
            Number of connections the message was delivered to
        """
        async with self._lock:
            connections = list(self.channels.get(channel, ()))

        if not connections:
            return 0

        message_json = json.dumps({"channel": channel, "event": event, "data": data or {}})
        delivered = 0
        disconnected_connections = []

        # Send outside the lock to avoid blocking subscribers
        for websocket in connections:
            try:
                await websocket.send_text(message_json)
                delivered += 1
            except Exception as e:
                logger.warning(f"Error sending WebSocket event {event} on {channel}: {e}")
                disconnected_connections.append(websocket)

        if disconnected_connections:
            async with self._lock:
                for ws in disconnected_connections:
                    self._remove_locked(ws)

        return delivered

    async def get_subscriber_count(self, channel: str) -> int:
        """Number of connections subscribed to a channel."""
        async with self._lock:
            return len(self.channels.get(channel, ()))

    async def update_activity(self, websocket: WebSocket):
        """
        Update the last activity timestamp for a WebSocket connection.
        Called when receiving ping or other messages from client.
        """
        async with self._lock:
            if websocket in self.connection_timestamps:
                self.connection_timestamps[websocket] = datetime.utcnow()

    async def cleanup_stale_connections(self) -> int:
        """
        Drop connections idle for longer than WEBSOCKET_TIMEOUT_SECONDS.

        Returns:
            Number of connections removed
        """
        timeout_threshold = datetime.utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS)

        async with self._lock:
            stale_connections = [
                ws for ws, last_activity in self.connection_timestamps.items()
                if last_activity < timeout_threshold
            ]
            for websocket in stale_connections:
                self._remove_locked(websocket)

        for websocket in stale_connections:
            try:
                await websocket.close(code=1000)
            except Exception as e:
                logger.debug(f"Error closing stale WebSocket: {e}")

        if stale_connections:
            logger.info(f"Cleaned up {len(stale_connections)} stale WebSocket connections")
        return len(stale_connections)


# Global WebSocket manager instance
_websocket_manager: Optional[WebSocketManager] = None


def get_websocket_manager() -> WebSocketManager:
    """
    Get the global WebSocket manager instance.

    Returns:
        WebSocketManager instance
    """
    global _websocket_manager
    if _websocket_manager is None:
        _websocket_manager = WebSocketManager()
    return _websocket_manager


async def notify(channel: str, event: str, data: Optional[Dict[str, Any]] = None) -> None:
    """Fire-and-forget broadcast; failures are logged, never raised."""
    try:
        await get_websocket_manager().broadcast(channel, event, data)
    except Exception as e:
        logger.warning(f"Failed to broadcast {event} on {channel}: {e}")
