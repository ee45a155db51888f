import asyncio
import json

from aiortc import RTCSessionDescription

OFFER_SDP = "\r\n".join([
    "v=0",
    "o=- 1 1 IN IP4 0.0.0.0",
    "s=-",
    "t=0 0",
    "m=audio 9 UDP/TLS/RTP/SAVPF 111",
    "c=IN IP4 0.0.0.0",
    "a=mid:0",
    "a=candidate:1 1 udp 2130706431 192.0.2.10 54321 typ host",
    "a=end-of-candidates",
    "m=video 9 UDP/TLS/RTP/SAVPF 96",
    "c=IN IP4 0.0.0.0",
    "a=candidate:2 1 udp 2130706431 192.0.2.10 54322 typ host",
    "a=mid:1",
    "",
])

ANSWER_SDP = "\r\n".join([
    "v=0",
    "o=- 2 2 IN IP4 0.0.0.0",
    "s=-",
    "t=0 0",
    "m=audio 9 UDP/TLS/RTP/SAVPF 111",
    "c=IN IP4 0.0.0.0",
    "a=mid:0",
    "a=candidate:7 1 udp 2130706431 198.51.100.4 40000 typ host",
    "",
])

REMOTE_CANDIDATE = {
    "candidate": "candidate:3 1 udp 1677729535 203.0.113.5 61000 typ srflx raddr 10.0.0.5 rport 61000",
    "sdpMid": "0",
    "sdpMLineIndex": 0,
}


class FakeWebSocket:
    """Server-side socket stand-in recording what the hub sends."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    def events(self, name=None):
        return [m for m in self.sent if name is None or m["event"] == name]


class FakeTrack:
    def __init__(self, kind="audio"):
        self.kind = kind
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeSender:
    def __init__(self, track):
        self.track = track


class FakePeerConnection:
    """In-memory negotiation engine with the aiortc method names.

    ``fail`` names the methods that should raise; ``addTrack:<kind>`` fails
    only for tracks of that kind. Like a real engine,
    ``addIceCandidate`` refuses candidates before a remote description.
    """

    def __init__(self, ice_servers=None, fail=(), remote_tracks=()):
        self.ice_servers = ice_servers
        self.fail = set(fail)
        self.remote_tracks = list(remote_tracks)
        self.handlers = {}
        self.tracks = []
        self.candidates = []
        self.localDescription = None
        self.remoteDescription = None
        self.connectionState = "new"
        self.closed = False

    def on(self, event, f):
        self.handlers[event] = f
        return f

    def emit(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            handler(*args)

    def _check(self, name):
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    def addTrack(self, track):
        self._check("addTrack")
        self._check(f"addTrack:{track.kind}")
        self.tracks.append(track)
        return FakeSender(track)

    def removeTrack(self, sender):
        self.tracks.remove(sender.track)

    async def createOffer(self):
        self._check("createOffer")
        return RTCSessionDescription(sdp=OFFER_SDP, type="offer")

    async def createAnswer(self):
        self._check("createAnswer")
        return RTCSessionDescription(sdp=ANSWER_SDP, type="answer")

    async def setLocalDescription(self, description):
        self._check("setLocalDescription")
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self._check("setRemoteDescription")
        self.remoteDescription = description
        for track in self.remote_tracks:
            self.emit("track", track)

    async def addIceCandidate(self, candidate):
        self._check("addIceCandidate")
        if self.remoteDescription is None:
            raise RuntimeError("addIceCandidate called before setRemoteDescription")
        self.candidates.append(candidate)

    def set_connection_state(self, state):
        self.connectionState = state
        self.emit("connectionstatechange")

    async def close(self):
        self.closed = True
        self.connectionState = "closed"


class FakeClientSocket:
    """Client-side websocket stand-in for RoomClient."""

    def __init__(self, incoming=()):
        self.sent = []
        self.incoming = asyncio.Queue()
        for frame in incoming:
            self.incoming.put_nowait(json.dumps(frame))
        self.closed = False

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def recv(self):
        return await self.incoming.get()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.incoming.empty():
            raise StopAsyncIteration
        return await self.incoming.get()

    async def close(self):
        self.closed = True

    def events(self, name=None):
        return [m for m in self.sent if name is None or m["event"] == name]
