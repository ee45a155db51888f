import asyncio
import json
from typing import Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

from errors import TransportError
from logging_config import get_logger


class ConnectionHub:
    """Live WebSocket connections of this process and their transport groups.

    A group is the set of connections that receive a room broadcast.
    Connections are keyed by the participant id minted on accept.
    """

    def __init__(self, logger=None):
        self._connections: Dict[str, WebSocket] = {}
        self._groups: Dict[str, Set[str]] = {}
        self.logger = logger or get_logger(__name__)

    def register(self, participant_id: str, websocket: WebSocket) -> None:
        self._connections[participant_id] = websocket
        self.logger.debug(f"Registered connection {participant_id} ({len(self._connections)} live)")

    def unregister(self, participant_id: str) -> None:
        self._connections.pop(participant_id, None)
        for room_id in [r for r, members in self._groups.items() if participant_id in members]:
            self.leave_group(room_id, participant_id)
        self.logger.debug(f"Unregistered connection {participant_id} ({len(self._connections)} live)")

    def is_connected(self, participant_id: str) -> bool:
        return participant_id in self._connections

    def join_group(self, room_id: str, participant_id: str) -> None:
        if participant_id not in self._connections:
            raise TransportError(f"Connection {participant_id} is not registered")
        self._groups.setdefault(room_id, set()).add(participant_id)

    def leave_group(self, room_id: str, participant_id: str) -> None:
        members = self._groups.get(room_id)
        if members is None:
            return
        members.discard(participant_id)
        if not members:
            del self._groups[room_id]

    def members(self, room_id: str) -> Set[str]:
        return set(self._groups.get(room_id, ()))

    async def send(self, participant_id: str, message: dict) -> bool:
        """Send one frame. Returns False when the target is gone."""
        websocket = self._connections.get(participant_id)
        if websocket is None:
            self.logger.debug(f"Dropping {message.get('event')} for unknown connection {participant_id}")
            return False
        try:
            await websocket.send_text(json.dumps(message))
        except Exception as e:
            # The socket closed under us; its own endpoint runs the cleanup
            self.logger.warning(f"Error sending {message.get('event')} to connection {participant_id}: {e}")
            return False
        return True

    async def send_many(self, participant_ids: Iterable[str], message: dict) -> int:
        targets: List[str] = list(participant_ids)
        if not targets:
            return 0
        results = await asyncio.gather(*(self.send(p, message) for p in targets), return_exceptions=True)
        delivered = sum(1 for r in results if r is True)
        self.logger.debug(f"Delivered {message.get('event')} to {delivered}/{len(targets)} connections")
        return delivered

    async def broadcast(self, room_id: str, message: dict, exclude: Optional[str] = None) -> int:
        targets = [p for p in self.members(room_id) if p != exclude]
        return await self.send_many(targets, message)
