# app/services/chat/websocket_manager.py
from typing import Dict, List
from uuid import UUID
from fastapi import WebSocket
import json
import logging

from .participants import Participant

logger = logging.getLogger(__name__)

class WebSocketManager:
    def __init__(self):
        # Store active connections: {participant_id: [{websocket, role, tenant_id}, ...]}, one entry per tab
        self.active_connections: Dict[str, List[Dict]] = {}

    async def connect(self, websocket: WebSocket, participant: Participant):
        """Accept websocket connection and store participant info"""
        await websocket.accept()
        participant_key = str(participant.participant_id)

        connections = self.active_connections.setdefault(participant_key, [])
        connections.append({
            "websocket": websocket,
            "role": participant.role.value,
            "tenant_id": str(participant.tenant_id),
        })

        logger.info(
            f"Participant {participant_key} ({participant.role.value}) connected, "
            f"{len(connections)} open socket(s)"
        )

        # Send connection confirmation
        await self.send_personal_message({
            "type": "connection_status",
            "status": "connected",
            "participant_id": participant_key,
            "role": participant.role.value
        }, participant.participant_id, websocket)

    def disconnect(self, participant_id: UUID, websocket: WebSocket):
        """Remove one socket; the participant's other tabs stay connected"""
        participant_key = str(participant_id)
        connections = self.active_connections.get(participant_key)
        if not connections:
            return

        remaining = [c for c in connections if c["websocket"] is not websocket]
        if remaining:
            self.active_connections[participant_key] = remaining
        else:
            del self.active_connections[participant_key]
        logger.info(f"Participant {participant_key} socket closed, {len(remaining)} still open")

    async def send_personal_message(self, message: dict, participant_id: UUID, websocket: WebSocket):
        """Send message to one socket of a participant"""
        participant_key = str(participant_id)
        connections = self.active_connections.get(participant_key, [])
        if not any(c["websocket"] is websocket for c in connections):
            return

        try:
            await websocket.send_text(json.dumps(message))
        except Exception as e:
            logger.error(f"Error sending message to {participant_key}: {e}")
            self.disconnect(participant_id, websocket)

# Global WebSocket manager instance
websocket_manager = WebSocketManager()
