"""
WebSocket Connection Manager for Real-Time Updates
Pushes donation lifecycle events to connected admin dashboards.
"""

from typing import Dict, Optional, Set
from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
import logging
from datetime import datetime

from store import serialize

logger = logging.getLogger(__name__)

DONATION_EVENTS = ("donation_pledged", "donation_completed", "donation_approved")


class ConnectionManager:
    """Manages WebSocket connections for real-time updates."""

    def __init__(self):
        # {admin_username: set of WebSocket connections}
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self.connection_count = 0

    async def connect(self, websocket: WebSocket, admin_username: str):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(admin_username, set()).add(websocket)
        self.connection_count += 1

        logger.info(f"Admin '{admin_username}' connected. Total connections: {self.connection_count}")

        await self.send_personal_message(
            {
                "type": "connection_established",
                "message": "Real-time connection established",
                "timestamp": datetime.now().isoformat()
            },
            websocket
        )

    def disconnect(self, websocket: WebSocket, admin_username: str):
        """Remove a WebSocket connection."""
        connections = self.active_connections.get(admin_username)
        if connections is None or websocket not in connections:
            return
        connections.discard(websocket)
        self.connection_count -= 1
        if not connections:
            del self.active_connections[admin_username]

        logger.info(f"Admin '{admin_username}' disconnected. Total connections: {self.connection_count}")

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        """Send a message to a specific WebSocket connection."""
        try:
            await websocket.send_json(jsonable_encoder(message))
        except Exception as e:
            logger.error(f"Error sending personal message: {e}")

    async def broadcast(self, message: dict):
        """Broadcast a message to all connected admin clients."""
        payload = jsonable_encoder(message)
        disconnected = []

        for admin_username, connections in self.active_connections.items():
            for connection in connections.copy():
                try:
                    await connection.send_json(payload)
                except Exception as e:
                    logger.error(f"Error broadcasting to {admin_username}: {e}")
                    disconnected.append((connection, admin_username))

        for connection, admin_username in disconnected:
            self.disconnect(connection, admin_username)

    async def broadcast_donation_event(self, event: Optional[str], donation: Optional[dict]):
        """Broadcast a donation lifecycle event. Does nothing when ``event`` is None."""
        if not event or donation is None:
            return
        if event not in DONATION_EVENTS:
            raise ValueError(f"Unknown donation event: {event}")
        await self.broadcast({
            "type": event,
            "data": serialize(donation),
            "timestamp": datetime.now().isoformat()
        })
        logger.info(f"Broadcasted {event} for transaction {donation.get('transactionId')}")

    async def broadcast_stats_update(self, stats: dict):
        """Broadcast updated dashboard statistics."""
        await self.broadcast({
            "type": "stats_update",
            "data": stats,
            "timestamp": datetime.now().isoformat()
        })

    def get_connection_count(self) -> int:
        return self.connection_count

    def get_connected_admins(self) -> list:
        return list(self.active_connections.keys())


# Global connection manager instance
manager = ConnectionManager()
