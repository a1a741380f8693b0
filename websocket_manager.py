"""
WebSocket Connection Manager for the live admin feed
Keeps every open admin console informed of campaign and withdrawal changes made by other admins.
"""

from typing import Dict, Set
from fastapi import WebSocket
import logging
from datetime import datetime

logger = logging.getLogger(__name__)


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
            await websocket.send_json(message)
        except Exception as e:
            logger.error(f"Error sending personal message: {e}")

    async def broadcast(self, event_type: str, data: dict):
        """Broadcast an event to all connected admin clients."""
        message = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now().isoformat()
        }
        disconnected = []

        for admin_username, connections in list(self.active_connections.items()):
            for connection in connections.copy():
                try:
                    await connection.send_json(message)
                except Exception as e:
                    logger.error(f"Error broadcasting to {admin_username}: {e}")
                    disconnected.append((connection, admin_username))

        for connection, admin_username in disconnected:
            self.disconnect(connection, admin_username)

        if self.connection_count:
            logger.debug(f"Broadcasted {event_type} to {self.connection_count} connections")

    async def campaign_status_changed(self, campaign_id: int, status: str, changed_by: str):
        await self.broadcast("campaign_status_changed", {
            "id": campaign_id,
            "status": status,
            "changed_by": changed_by,
        })

    async def submission_rated(self, submission: dict, rated_by: str):
        await self.broadcast("submission_rated", {**submission, "rated_by": rated_by})

    async def prizes_distributed(self, results: dict, distributed_by: str):
        await self.broadcast("prizes_distributed", {**results, "distributed_by": distributed_by})

    async def withdrawal_requested(self, withdrawal: dict):
        await self.broadcast("withdrawal_requested", withdrawal)

    async def withdrawal_processed(self, withdrawal: dict):
        await self.broadcast("withdrawal_processed", withdrawal)

    def get_connection_count(self) -> int:
        """Get the total number of active connections."""
        return self.connection_count

    def get_connected_admins(self) -> list:
        """Get list of currently connected admin usernames."""
        return list(self.active_connections.keys())


# Global connection manager instance
manager = ConnectionManager()
