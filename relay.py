from enum import Enum
from typing import Any

from pydantic import ValidationError

from connections import ConnectionHub
from directory import Directory
from errors import SignalingError
from logging_config import get_logger
from schemas import signaling
from schemas.signaling import (
    AnswerMessage,
    IceCandidateMessage,
    JoinRoom,
    LeaveRoom,
    OfferMessage,
)


class SessionState(str, Enum):
    CONNECTED = "connected"
    IN_ROOM = "in_room"
    CLOSED = "closed"


class RelaySession:
    """Signaling state of one WebSocket connection.

    Owns the participant id of the connection for its whole lifetime. Room
    membership goes through the shared Directory; frames go out through the
    ConnectionHub. Offers, answers and candidates are routed by target
    participant only and never touch the Directory.

    The caller must await each ``handle``/``handle_raw`` call before passing
    the next frame of the same connection.
    """

    def __init__(self, participant_id: str, directory: Directory, hub: ConnectionHub, logger=None):
        self.participant_id = participant_id
        self.directory = directory
        self.hub = hub
        self.state = SessionState.CONNECTED
        self.logger = logger or get_logger(__name__)

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    async def handle_raw(self, raw: str) -> None:
        if self.closed:
            return
        try:
            message = signaling.parse_client_message(raw)
        except ValidationError as e:
            self.logger.warning(f"Rejected malformed frame from {self.participant_id}: {e.error_count()} errors")
            await self._reply(signaling.error(f"Invalid message: {_summarize(e)}"))
            return
        await self.handle(message)

    async def handle(self, message) -> None:
        if self.closed:
            self.logger.debug(f"Ignoring {message.event} from closed connection {self.participant_id}")
            return
        if isinstance(message, JoinRoom):
            await self.join_room(message.data)
        elif isinstance(message, LeaveRoom):
            await self.leave_room(message.data)
        elif isinstance(message, OfferMessage):
            await self.relay_offer(message.data.to, message.data.offer)
        elif isinstance(message, AnswerMessage):
            await self.relay_answer(message.data.to, message.data.answer)
        elif isinstance(message, IceCandidateMessage):
            await self.relay_ice_candidate(message.data.to, message.data.candidate)
        else:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")

    async def join_room(self, room_id: str) -> None:
        if self.closed:
            return
        room_existed = self.directory.room_exists(room_id)
        was_member = room_id in self.directory.rooms_of(self.participant_id)
        try:
            self.directory.add_participant(room_id, self.participant_id)
            self.hub.join_group(room_id, self.participant_id)
        except SignalingError as e:
            self._rollback_join(room_id, room_existed, was_member)
            self.logger.warning(f"Join failed for {self.participant_id} in room {room_id}: {e}")
            await self._reply(signaling.error(f"Failed to join room: {e}"))
            return

        self.state = SessionState.IN_ROOM
        others = [p for p in self.directory.participants_of(room_id) if p != self.participant_id]
        self.logger.info(f"Participant {self.participant_id} joined room {room_id} ({len(others)} others)")

        await self.hub.broadcast(room_id, signaling.user_joined(self.participant_id), exclude=self.participant_id)
        await self._reply(signaling.room_info(room_id, others))

    def _rollback_join(self, room_id: str, room_existed: bool, was_member: bool) -> None:
        if not was_member:
            self.directory.remove_participant(room_id, self.participant_id)
        if not room_existed:
            self.directory.remove_room(room_id)

    async def leave_room(self, room_id: str) -> None:
        if self.closed:
            return
        if room_id not in self.directory.rooms_of(self.participant_id):
            self.logger.debug(f"Participant {self.participant_id} is not in room {room_id}, nothing to leave")
            return
        self.hub.leave_group(room_id, self.participant_id)
        await self._depart(room_id)
        if not self.directory.rooms_of(self.participant_id):
            self.state = SessionState.CONNECTED

    async def relay_offer(self, to: str, offer: Any) -> bool:
        return await self._forward(to, signaling.offer_from(self.participant_id, offer))

    async def relay_answer(self, to: str, answer: Any) -> bool:
        return await self._forward(to, signaling.answer_from(self.participant_id, answer))

    async def relay_ice_candidate(self, to: str, candidate: Any) -> bool:
        return await self._forward(to, signaling.ice_candidate_from(self.participant_id, candidate))

    async def _forward(self, to: str, message: dict) -> bool:
        if self.closed:
            return False
        delivered = await self.hub.send(to, message)
        if delivered:
            self.logger.debug(f"Relayed {message['event']} from {self.participant_id} to {to}")
        return delivered

    async def disconnect(self) -> None:
        """Leave every room and mark the session closed. Runs once."""
        if self.closed:
            return
        self.state = SessionState.CLOSED
        rooms = self.directory.rooms_of(self.participant_id)
        self.hub.unregister(self.participant_id)
        for room_id in rooms:
            await self._depart(room_id)
        self.logger.info(f"Participant {self.participant_id} disconnected, left {len(rooms)} rooms")

    async def _depart(self, room_id: str) -> None:
        self.directory.remove_participant(room_id, self.participant_id)
        remaining = self.directory.participants_of(room_id)
        if remaining:
            await self.hub.send_many(remaining, signaling.user_left(self.participant_id))
        else:
            self.directory.remove_room(room_id)
            self.logger.info(f"Room {room_id} is empty, removed")

    async def _reply(self, message: dict) -> None:
        await self.hub.send(self.participant_id, message)


def _summarize(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "frame"
    return f"{location}: {first.get('msg')}"
