"""
WebSocket connection manager for real-time notification delivery.

Manages active WebSocket connections per user and implements the
NotificationSink interface the league services publish to. The services
never hold connection state themselves; they only call `publish`.
"""

import asyncio
import json
import logging
from typing import Dict, Set, Optional, Protocol
from datetime import datetime, timedelta
from fastapi import WebSocket

from padel_league.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Timeout for WebSocket connections (30 seconds of inactivity)
WEBSOCKET_TIMEOUT_SECONDS = 30


class NotificationSink(Protocol):
    """Anything that can push an event to a user."""

    async def publish(self, user_id: int, event: dict) -> bool:
        ...


class WebSocketManager:
    """Manages WebSocket connections for real-time notifications."""

    def __init__(self):
        """Initialize the WebSocket manager."""
        # Dictionary mapping user_id to set of active WebSocket connections
        self.active_connections: Dict[int, Set[WebSocket]] = {}
        # Dictionary mapping WebSocket to last activity timestamp
        self.connection_timestamps: Dict[WebSocket, datetime] = {}
        # Lock for safe access to connections dict
        self._lock = asyncio.Lock()

    async def connect(self, user_id: int, websocket: WebSocket):
        """
        Register a WebSocket connection for a user.

        Args:
            user_id: ID of the user
            websocket: WebSocket connection object
        """
        async with self._lock:
            self.active_connections.setdefault(user_id, set()).add(websocket)
            self.connection_timestamps[websocket] = utcnow()
            logger.info(f"WebSocket connected for user {user_id} (total connections: {len(self.active_connections[user_id])})")

    async def disconnect(self, user_id: int, websocket: WebSocket):
        """Remove a WebSocket connection for a user."""
        async with self._lock:
            if user_id in self.active_connections:
                self.active_connections[user_id].discard(websocket)
                if not self.active_connections[user_id]:
                    del self.active_connections[user_id]
            self.connection_timestamps.pop(websocket, None)
            logger.info(f"WebSocket disconnected for user {user_id}")

    async def publish(self, user_id: int, event: dict) -> bool:
        """
        Send an event to all active WebSocket connections for a user.

        Args:
            user_id: ID of the user
            event: Event dict to send (will be serialized to JSON)

        Returns:
            True if the event reached at least one connection, False otherwise
        """
        async with self._lock:
            if user_id not in self.active_connections:
                return False
            connections = self.active_connections[user_id].copy()

        # Send outside the lock to avoid blocking other users
        sent = False
        disconnected_connections = []
        message_json = json.dumps(event, default=str)

        for websocket in connections:
            try:
                await websocket.send_text(message_json)
                sent = True
                async with self._lock:
                    self.connection_timestamps[websocket] = utcnow()
            except Exception as e:
                logger.warning(f"Error sending WebSocket message to user {user_id}: {e}")
                disconnected_connections.append(websocket)

        if disconnected_connections:
            async with self._lock:
                if user_id in self.active_connections:
                    for ws in disconnected_connections:
                        self.active_connections[user_id].discard(ws)
                        self.connection_timestamps.pop(ws, None)
                    if not self.active_connections[user_id]:
                        del self.active_connections[user_id]

        return sent

    async def get_connection_count(self, user_id: int) -> int:
        """Get the number of active connections for a user."""
        async with self._lock:
            return len(self.active_connections.get(user_id, ()))

    async def update_activity(self, websocket: WebSocket):
        """
        Update the last activity timestamp for a WebSocket connection.
        Called when receiving ping or other messages from client.
        """
        async with self._lock:
            if websocket in self.connection_timestamps:
                self.connection_timestamps[websocket] = utcnow()

    async def cleanup_stale_connections(self):
        """Drop connections with no activity within the timeout period."""
        timeout_threshold = utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS)

        async with self._lock:
            stale = [
                (user_id, websocket)
                for user_id, conn_set in self.active_connections.items()
                for websocket in conn_set
                if self.connection_timestamps.get(websocket, timeout_threshold) <= timeout_threshold
            ]

        for user_id, websocket in stale:
            await self.disconnect(user_id, websocket)
            logger.info(f"Cleaned up stale WebSocket connection for user {user_id}")


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
