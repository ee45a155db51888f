"""Signaling client: joins a relay room and negotiates with every peer in it.

Usage:
    SIGNAL_URL=ws://localhost:3000/ws MEDIA_SOURCE=clip.mp4 python client.py <room_id>
"""
import asyncio
import json
import sys
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import websockets

from constants import LOG_FILE, LOG_LEVEL, MEDIA_SOURCE, SIGNAL_URL
from errors import NegotiationError, SignalingError
from logging_config import get_logger, setup_logging
from peer import PeerSession, RemoteStream, invoke_callback

logger = get_logger(__name__)


class RoomClient:
    """One relay connection plus a PeerSession per remote participant.

    Existing members offer to newcomers: ``user-joined`` makes this client
    the initiator, an ``offer`` from an unseen peer makes it the responder.
    Frames are processed one at a time in arrival order. A negotiation error
    closes that peer's session and is reported to ``on_negotiation_error``;
    nothing is retried.
    """

    def __init__(
        self,
        url: str = SIGNAL_URL,
        local_tracks: Optional[List[Any]] = None,
        on_remote_stream: Optional[Callable[[RemoteStream], Any]] = None,
        on_negotiation_error: Optional[Callable[[str, NegotiationError], Any]] = None,
        ice_servers: Optional[List[str]] = None,
        session_factory: Callable[..., PeerSession] = PeerSession,
        connect_kwargs: Optional[dict] = None,
        logger=None,
    ):
        self.url = url
        self.local_tracks = list(local_tracks or [])
        self.on_remote_stream = on_remote_stream
        self.on_negotiation_error = on_negotiation_error
        self.ice_servers = ice_servers
        self.session_factory = session_factory
        self.connect_kwargs = connect_kwargs or {}
        self.logger = logger or get_logger(__name__)

        self.participant_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.participants: List[str] = []
        self.sessions: Dict[str, PeerSession] = {}
        self.ws = None

        self._handlers = {
            "room-info": self._on_room_info,
            "user-joined": self._on_user_joined,
            "user-left": self._on_user_left,
            "offer": self._on_offer,
            "answer": self._on_answer,
            "ice-candidate": self._on_ice_candidate,
            "error": self._on_error,
        }

    async def connect(self) -> str:
        """Open the relay connection and wait for the participant id."""
        self.ws = await websockets.connect(self.url, **self.connect_kwargs)
        greeting = json.loads(await self.ws.recv())
        if greeting.get("event") != "connected":
            raise SignalingError(f"Expected a connected greeting, got {greeting.get('event')!r}")
        self.participant_id = greeting["data"]["participantId"]
        self.logger.info(f"Connected to {self.url} as {self.participant_id}")
        return self.participant_id

    async def join(self, room_id: str) -> None:
        self.room_id = room_id
        self.logger.info(f"Joining room {room_id}")
        await self._send("join-room", room_id)

    async def leave(self) -> None:
        if self.room_id is None:
            return
        await self._send("leave-room", self.room_id)
        for peer_id in list(self.sessions):
            await self._discard_session(peer_id)
        self.logger.info(f"Left room {self.room_id}")
        self.room_id = None
        self.participants = []

    async def run(self) -> None:
        """Process relay frames until the connection closes."""
        try:
            async for raw in self.ws:
                await self.handle_frame(raw)
        except websockets.ConnectionClosedError as e:
            self.logger.warning(f"Relay connection closed with error: {e}")
        self.logger.info("Relay connection closed")

    async def handle_frame(self, raw) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Ignoring non-JSON frame from relay: {e}")
            return
        await self.handle_message(message)

    async def handle_message(self, message: dict) -> None:
        event = message.get("event")
        handler = self._handlers.get(event)
        if handler is None:
            self.logger.debug(f"Ignoring relay event {event!r}")
            return
        await handler(message.get("data"))

    async def _on_room_info(self, data: dict) -> None:
        self.participants = list(data.get("participants", []))
        self.logger.info(f"Room {data.get('roomId')} has {len(self.participants)} other participants")

    async def _on_user_joined(self, peer_id: str) -> None:
        if peer_id == self.participant_id:
            return
        self.logger.info(f"Participant {peer_id} joined, sending offer")
        if peer_id not in self.participants:
            self.participants.append(peer_id)

        async def step():
            session = await self._open_session(peer_id)
            offer = await session.create_offer()
            if offer is None:
                return
            await self._send("offer", {"to": peer_id, "offer": offer})
            await session.dispatch_local_candidates()

        await self._negotiate(peer_id, step)

    async def _on_offer(self, data: dict) -> None:
        peer_id = data["from"]
        self.logger.info(f"Received offer from {peer_id}")

        async def step():
            session = self.sessions.get(peer_id) or await self._open_session(peer_id)
            answer = await session.accept_offer(data["offer"])
            if answer is None:
                return
            await self._send("answer", {"to": peer_id, "answer": answer})
            await session.dispatch_local_candidates()

        await self._negotiate(peer_id, step)

    async def _on_answer(self, data: dict) -> None:
        peer_id = data["from"]
        session = self.sessions.get(peer_id)
        if session is None:
            self.logger.warning(f"Dropping answer from {peer_id}: no session")
            return
        self.logger.info(f"Received answer from {peer_id}")
        await self._negotiate(peer_id, partial(session.accept_answer, data["answer"]))

    async def _on_ice_candidate(self, data: dict) -> None:
        peer_id = data["from"]
        session = self.sessions.get(peer_id)
        if session is None:
            self.logger.warning(f"Dropping candidate from {peer_id}: no session")
            return
        await self._negotiate(peer_id, partial(session.add_remote_candidate, data["candidate"]))

    async def _on_user_left(self, peer_id: str) -> None:
        self.logger.info(f"Participant {peer_id} left")
        if peer_id in self.participants:
            self.participants.remove(peer_id)
        await self._discard_session(peer_id)

    async def _on_error(self, data: dict) -> None:
        self.logger.error(f"Relay reported an error: {data.get('message') if isinstance(data, dict) else data}")

    async def _open_session(self, peer_id: str) -> PeerSession:
        await self._discard_session(peer_id)
        session = self.session_factory(
            peer_id,
            on_remote_stream=self.on_remote_stream,
            on_local_candidate=partial(self._send_candidate, peer_id),
            ice_servers=self.ice_servers,
        )
        self.sessions[peer_id] = session
        if self.local_tracks:
            await session.attach_local_stream(self.local_tracks)
        return session

    async def _negotiate(self, peer_id: str, step: Callable) -> None:
        try:
            await step()
        except NegotiationError as e:
            self.logger.error(f"Negotiation with {peer_id} failed: {e}")
            await self._discard_session(peer_id)
            await invoke_callback(self.on_negotiation_error, peer_id, e)

    async def _discard_session(self, peer_id: str) -> None:
        session = self.sessions.pop(peer_id, None)
        if session is not None:
            # the local tracks are shared with the other sessions
            await session.close(stop_tracks=False)

    async def _send_candidate(self, peer_id: str, candidate: dict) -> None:
        await self._send("ice-candidate", {"to": peer_id, "candidate": candidate})

    async def _send(self, event: str, data) -> None:
        await self.ws.send(json.dumps({"event": event, "data": data}))

    async def close(self) -> None:
        for peer_id in list(self.sessions):
            await self._discard_session(peer_id)
        if self.ws is not None:
            await self.ws.close()
            self.ws = None


def _log_remote_stream(stream: RemoteStream) -> None:
    logger.info(f"Receiving media from {stream.remote_id}: {', '.join(k or '?' for k in stream.kinds)}")


async def main(room_id: str) -> None:
    player = None
    tracks = []
    if MEDIA_SOURCE:
        from aiortc.contrib.media import MediaPlayer

        player = MediaPlayer(MEDIA_SOURCE)
        tracks = [t for t in (player.audio, player.video) if t is not None]

    client = RoomClient(SIGNAL_URL, local_tracks=tracks, on_remote_stream=_log_remote_stream)
    await client.connect()
    await client.join(room_id)
    try:
        await client.run()
    finally:
        await client.close()
        for track in tracks:
            track.stop()


if __name__ == "__main__":
    setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
    if len(sys.argv) < 2:
        print("usage: python client.py <room_id>")
        sys.exit(2)
    asyncio.run(main(sys.argv[1]))
