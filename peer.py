"""Client-side negotiation with one remote participant.

A PeerSession wraps one aiortc RTCPeerConnection and walks it through the
offer/answer exchange:

    IDLE -> HAVE_LOCAL_OFFER -> CONNECTED          (initiator)
    IDLE -> HAVE_REMOTE_OFFER -> CONNECTED         (responder)

and CLOSED from anywhere. Session descriptions and candidates travel as the
plain JSON dicts browsers produce (``{"type", "sdp"}`` and
``{"candidate", "sdpMid", "sdpMLineIndex"}``).
"""
import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from constants import STUN_SERVERS
from errors import NegotiationError
from logging_config import get_logger

INITIATOR = "initiator"
RESPONDER = "responder"

SET_LOCAL_STREAM_FAILED = "SET_LOCAL_STREAM_FAILED"
CREATE_OFFER_FAILED = "CREATE_OFFER_FAILED"
HANDLE_OFFER_FAILED = "HANDLE_OFFER_FAILED"
HANDLE_ANSWER_FAILED = "HANDLE_ANSWER_FAILED"
ADD_ICE_CANDIDATE_FAILED = "ADD_ICE_CANDIDATE_FAILED"
INVALID_STATE = "INVALID_STATE"


class NegotiationState(str, Enum):
    IDLE = "idle"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    CONNECTED = "connected"
    CLOSED = "closed"


class RemoteStream:
    """Inbound tracks from one remote participant."""

    def __init__(self, remote_id: str):
        self.remote_id = remote_id
        self.tracks: List[Any] = []

    def add_track(self, track) -> None:
        self.tracks.append(track)

    @property
    def kinds(self) -> List[str]:
        return [getattr(track, "kind", None) for track in self.tracks]


def description_to_dict(description) -> dict:
    return {"type": description.type, "sdp": description.sdp}


def description_from_dict(payload: dict) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])


def candidate_from_dict(payload: dict):
    sdp = payload["candidate"]
    if sdp.startswith("candidate:"):
        sdp = sdp[len("candidate:"):]
    candidate = candidate_from_sdp(sdp)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


def is_end_of_candidates(payload) -> bool:
    return payload is None or (isinstance(payload, dict) and not payload.get("candidate"))


def local_candidates_from_sdp(sdp: str) -> List[dict]:
    """Extract the ``a=candidate`` lines of each media section as candidate dicts."""
    sections: List[List[str]] = []
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            sections.append([])
        elif sections:
            sections[-1].append(line)

    candidates = []
    for index, lines in enumerate(sections):
        mid = next((l[len("a=mid:"):] for l in lines if l.startswith("a=mid:")), None)
        for l in lines:
            if l.startswith("a=candidate:"):
                candidates.append({"candidate": l[len("a="):], "sdpMid": mid, "sdpMLineIndex": index})
    return candidates


def default_connection_factory(ice_servers: List[str]) -> RTCPeerConnection:
    return RTCPeerConnection(RTCConfiguration(iceServers=[RTCIceServer(urls=list(ice_servers))]))


async def invoke_callback(callback: Optional[Callable], *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class PeerSession:
    """Negotiation state machine for one remote participant.

    Operations are serialized with a per-session lock. Any operation on a
    closed session is a no-op returning None, and an operation that finds
    the session closed after one of its engine awaits stops there.

    Remote candidates received before a remote description are queued and
    applied, in order, once it is set. Local candidates found in the local
    description wait in ``pending_local_candidates`` until the owner calls
    ``dispatch_local_candidates`` after sending the description.
    """

    def __init__(
        self,
        remote_id: str,
        on_remote_stream: Optional[Callable[[RemoteStream], Any]] = None,
        on_local_candidate: Optional[Callable[[dict], Any]] = None,
        ice_servers: Optional[List[str]] = None,
        connection_factory: Optional[Callable[[List[str]], Any]] = None,
        logger=None,
    ):
        self.remote_id = remote_id
        self.on_remote_stream = on_remote_stream
        self.on_local_candidate = on_local_candidate
        self.logger = logger or get_logger(__name__)

        self.state = NegotiationState.IDLE
        self.role: Optional[str] = None
        self.local_description: Optional[dict] = None
        self.remote_stream: Optional[RemoteStream] = None
        self.pending_local_candidates: List[dict] = []
        self.rejected_remote_candidates: List[dict] = []

        self._local_tracks: List[Any] = []
        self._remote_description_set = False
        self._pending_remote_candidates: List[dict] = []
        self._lock = asyncio.Lock()
        self._stream_task: Optional[asyncio.Task] = None

        factory = connection_factory or default_connection_factory
        self._pc = factory(ice_servers if ice_servers is not None else STUN_SERVERS)
        self._pc.on("track", self._on_track)
        self._pc.on("connectionstatechange", self._on_connection_state_change)

    @property
    def closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    @property
    def pending_remote_candidates(self) -> List[dict]:
        return list(self._pending_remote_candidates)

    def _require(self, expected: NegotiationState, action: str) -> None:
        if self.state is not expected:
            raise NegotiationError(
                f"Cannot {action} with {self.remote_id} in state {self.state.value}", INVALID_STATE
            )

    async def attach_local_stream(self, tracks: Iterable[Any]) -> None:
        """Add every local track to the connection. Only valid before negotiating."""
        async with self._lock:
            if self.closed:
                return
            self._require(NegotiationState.IDLE, "attach local media")
            tracks = list(tracks)
            senders = []
            try:
                for track in tracks:
                    senders.append(self._pc.addTrack(track))
            except Exception as e:
                for sender in senders:
                    self._pc.removeTrack(sender)
                self.logger.error(f"Failed to attach local media for {self.remote_id}: {e}")
                raise NegotiationError("Failed to attach local media", SET_LOCAL_STREAM_FAILED) from e
            self._local_tracks.extend(tracks)
            self.logger.info(f"Attached {len(tracks)} local tracks for {self.remote_id}")

    async def create_offer(self) -> Optional[dict]:
        async with self._lock:
            if self.closed:
                return None
            self._require(NegotiationState.IDLE, "create an offer")
            try:
                offer = await self._pc.createOffer()
                if self.closed:
                    return None
                await self._pc.setLocalDescription(offer)
            except Exception as e:
                if self.closed:
                    return None
                self.logger.error(f"Failed to create offer for {self.remote_id}: {e}")
                raise NegotiationError("Failed to create offer", CREATE_OFFER_FAILED) from e
            if self.closed:
                return None

            self.role = INITIATOR
            self.local_description = description_to_dict(self._pc.localDescription)
            self._collect_local_candidates()
            self.state = NegotiationState.HAVE_LOCAL_OFFER
            self.logger.info(f"Created offer for {self.remote_id}")
            return self.local_description

    async def accept_offer(self, remote_description: dict) -> Optional[dict]:
        async with self._lock:
            if self.closed:
                return None
            self._require(NegotiationState.IDLE, "accept an offer")
            try:
                await self._pc.setRemoteDescription(description_from_dict(remote_description))
                self._remote_description_set = True
                if self.closed:
                    return None
                answer = await self._pc.createAnswer()
                if self.closed:
                    return None
                await self._pc.setLocalDescription(answer)
            except Exception as e:
                if self.closed:
                    return None
                self.logger.error(f"Failed to handle offer from {self.remote_id}: {e}")
                raise NegotiationError("Failed to handle offer", HANDLE_OFFER_FAILED) from e
            if self.closed:
                return None

            self.role = RESPONDER
            self.local_description = description_to_dict(self._pc.localDescription)
            self._collect_local_candidates()
            self.state = NegotiationState.HAVE_REMOTE_OFFER
            self.logger.info(f"Accepted offer from {self.remote_id}, answer ready")
            await self._flush_remote_candidates()
            return self.local_description

    async def accept_answer(self, remote_description: dict) -> None:
        async with self._lock:
            if self.closed:
                return
            self._require(NegotiationState.HAVE_LOCAL_OFFER, "accept an answer")
            try:
                await self._pc.setRemoteDescription(description_from_dict(remote_description))
            except Exception as e:
                if self.closed:
                    return
                self.logger.error(f"Failed to handle answer from {self.remote_id}: {e}")
                raise NegotiationError("Failed to handle answer", HANDLE_ANSWER_FAILED) from e
            if self.closed:
                return

            self._remote_description_set = True
            self.state = NegotiationState.CONNECTED
            self.logger.info(f"Accepted answer from {self.remote_id}")
            await self._flush_remote_candidates()

    async def add_remote_candidate(self, candidate: Optional[dict]) -> None:
        async with self._lock:
            if self.closed:
                return
            if is_end_of_candidates(candidate):
                self.logger.debug(f"End of candidates from {self.remote_id}")
                return
            if not self._remote_description_set:
                self._pending_remote_candidates.append(candidate)
                self.logger.debug(
                    f"Queued candidate from {self.remote_id} ({len(self._pending_remote_candidates)} waiting)"
                )
                return
            await self._apply_remote_candidate(candidate)

    async def _apply_remote_candidate(self, candidate: dict) -> None:
        try:
            await self._pc.addIceCandidate(candidate_from_dict(candidate))
        except Exception as e:
            if self.closed:
                return
            self.logger.error(f"Failed to add candidate from {self.remote_id}: {e}")
            raise NegotiationError("Failed to add ICE candidate", ADD_ICE_CANDIDATE_FAILED) from e
        self.logger.debug(f"Added candidate from {self.remote_id}")

    async def _flush_remote_candidates(self) -> None:
        """Apply queued candidates in arrival order.

        A candidate the engine refuses is logged and kept in
        ``rejected_remote_candidates``; it does not fail the description
        that triggered the flush, nor hold back the candidates behind it.
        """
        while self._pending_remote_candidates and not self.closed:
            candidate = self._pending_remote_candidates.pop(0)
            try:
                await self._apply_remote_candidate(candidate)
            except NegotiationError:
                self.rejected_remote_candidates.append(candidate)

    def _collect_local_candidates(self) -> None:
        sdp = self.local_description["sdp"] if self.local_description else ""
        found = local_candidates_from_sdp(sdp)
        self.pending_local_candidates.extend(found)
        self.logger.debug(f"Gathered {len(found)} local candidates for {self.remote_id}")

    async def dispatch_local_candidates(self) -> int:
        """Hand pending local candidates to ``on_local_candidate``, oldest first."""
        if self.on_local_candidate is None:
            return 0
        sent = 0
        while self.pending_local_candidates and not self.closed:
            candidate = self.pending_local_candidates.pop(0)
            await invoke_callback(self.on_local_candidate, candidate)
            sent += 1
        return sent

    def _on_track(self, track) -> None:
        if self.closed:
            return
        self.logger.info(f"Received remote {getattr(track, 'kind', 'media')} track from {self.remote_id}")
        if self.remote_stream is not None:
            self.remote_stream.add_track(track)
            return
        self.remote_stream = RemoteStream(self.remote_id)
        self.remote_stream.add_track(track)
        asyncio.get_running_loop().call_soon(self._deliver_remote_stream)

    def _deliver_remote_stream(self) -> None:
        if self.closed or self.on_remote_stream is None:
            return
        result = self.on_remote_stream(self.remote_stream)
        if inspect.isawaitable(result):
            self._stream_task = asyncio.ensure_future(result)
            self._stream_task.add_done_callback(self._on_stream_task_done)

    def _on_stream_task_done(self, task: asyncio.Task) -> None:
        if self._stream_task is task:
            self._stream_task = None
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Remote stream callback for {self.remote_id} failed: {error}", exc_info=error)

    def _on_connection_state_change(self) -> None:
        connection_state = self._pc.connectionState
        self.logger.info(f"Connection state with {self.remote_id}: {connection_state}")
        if self.closed:
            return
        if connection_state == "connected" and self.state is NegotiationState.HAVE_REMOTE_OFFER:
            self.state = NegotiationState.CONNECTED
        elif connection_state == "failed":
            self.logger.warning(f"Connection with {self.remote_id} failed")

    async def close(self, stop_tracks: bool = True) -> None:
        """Release the connection and, unless told otherwise, stop the local tracks.

        Pass ``stop_tracks=False`` when the same tracks are still sent to other
        peers. Safe to call repeatedly and from inside callbacks.
        """
        if self.closed:
            return
        self.state = NegotiationState.CLOSED
        self._pending_remote_candidates.clear()
        self.pending_local_candidates.clear()
        if self._stream_task is not None and self._stream_task is not asyncio.current_task():
            self._stream_task.cancel()
            self._stream_task = None
        for track in self._local_tracks if stop_tracks else ():
            try:
                track.stop()
            except Exception as e:
                self.logger.error(f"Error stopping local track for {self.remote_id}: {e}")
        try:
            await self._pc.close()
        except Exception as e:
            self.logger.error(f"Error closing connection with {self.remote_id}: {e}")
        self.logger.info(f"Closed session with {self.remote_id}")
