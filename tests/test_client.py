from functools import partial

import pytest

import client as client_module
from client import RoomClient
from errors import SignalingError
from fakes import ANSWER_SDP, OFFER_SDP, REMOTE_CANDIDATE, FakeClientSocket, FakePeerConnection, FakeTrack
from peer import HANDLE_ANSWER_FAILED, NegotiationState, PeerSession


def fake_session_factory(engines, fail=()):
    def connection_factory(ice_servers):
        engine = FakePeerConnection(ice_servers, fail=fail)
        engines.append(engine)
        return engine

    return partial(PeerSession, connection_factory=connection_factory)


@pytest.fixture
def engines():
    return []


@pytest.fixture
def room_client(engines):
    room_client = RoomClient("ws://relay.test/ws", session_factory=fake_session_factory(engines))
    room_client.ws = FakeClientSocket()
    room_client.participant_id = "p1"
    return room_client


async def test_connect_reads_participant_id(monkeypatch):
    socket = FakeClientSocket([{"event": "connected", "data": {"participantId": "abc"}}])
    seen = {}

    async def fake_connect(url, **kwargs):
        seen["url"] = url
        return socket

    monkeypatch.setattr(client_module.websockets, "connect", fake_connect)
    room_client = RoomClient("ws://relay.test/ws")

    assert await room_client.connect() == "abc"
    assert room_client.participant_id == "abc"
    assert seen["url"] == "ws://relay.test/ws"


async def test_connect_rejects_unexpected_greeting(monkeypatch):
    socket = FakeClientSocket([{"event": "room-info", "data": {}}])

    async def fake_connect(url, **kwargs):
        return socket

    monkeypatch.setattr(client_module.websockets, "connect", fake_connect)
    with pytest.raises(SignalingError):
        await RoomClient("ws://relay.test/ws").connect()


async def test_join_sends_join_room(room_client):
    await room_client.join("abc123")
    assert room_client.ws.sent == [{"event": "join-room", "data": "abc123"}]


async def test_user_joined_sends_offer_then_candidates(room_client, engines):
    tracks = [FakeTrack("audio")]
    room_client.local_tracks = tracks

    await room_client.handle_message({"event": "user-joined", "data": "p2"})

    events = [m["event"] for m in room_client.ws.sent]
    assert events == ["offer", "ice-candidate", "ice-candidate"]
    offer = room_client.ws.sent[0]["data"]
    assert offer == {"to": "p2", "offer": {"type": "offer", "sdp": OFFER_SDP}}
    assert all(m["data"]["to"] == "p2" for m in room_client.ws.sent[1:])
    assert engines[0].tracks == tracks
    assert room_client.sessions["p2"].state is NegotiationState.HAVE_LOCAL_OFFER
    assert room_client.participants == ["p2"]


async def test_offer_from_unseen_peer_is_answered(room_client):
    await room_client.handle_message({"event": "offer", "data": {"from": "p2", "offer": {"type": "offer", "sdp": OFFER_SDP}}})

    assert room_client.ws.sent[0] == {"event": "answer", "data": {"to": "p2", "answer": {"type": "answer", "sdp": ANSWER_SDP}}}
    assert room_client.ws.events("ice-candidate")
    assert room_client.sessions["p2"].state is NegotiationState.HAVE_REMOTE_OFFER


async def test_answer_and_candidates_reach_the_session(room_client, engines):
    await room_client.handle_message({"event": "user-joined", "data": "p2"})
    await room_client.handle_message({"event": "ice-candidate", "data": {"from": "p2", "candidate": REMOTE_CANDIDATE}})
    await room_client.handle_message({"event": "answer", "data": {"from": "p2", "answer": {"type": "answer", "sdp": ANSWER_SDP}}})

    assert room_client.sessions["p2"].state is NegotiationState.CONNECTED
    assert len(engines[0].candidates) == 1


async def test_frames_for_unknown_peers_are_dropped(room_client):
    await room_client.handle_message({"event": "answer", "data": {"from": "ghost", "answer": {"type": "answer", "sdp": ANSWER_SDP}}})
    await room_client.handle_message({"event": "ice-candidate", "data": {"from": "ghost", "candidate": REMOTE_CANDIDATE}})
    await room_client.handle_message({"event": "something-new", "data": None})

    assert room_client.sessions == {}
    assert room_client.ws.sent == []


async def test_user_left_closes_session_but_keeps_tracks(room_client, engines):
    tracks = [FakeTrack("video")]
    room_client.local_tracks = tracks
    await room_client.handle_message({"event": "user-joined", "data": "p2"})

    await room_client.handle_message({"event": "user-left", "data": "p2"})

    assert "p2" not in room_client.sessions
    assert engines[0].closed
    assert not tracks[0].stopped
    assert room_client.participants == []


async def test_negotiation_error_drops_session_and_reports(engines):
    errors = []
    room_client = RoomClient(
        "ws://relay.test/ws",
        session_factory=fake_session_factory(engines, fail=["setRemoteDescription"]),
        on_negotiation_error=lambda peer_id, error: errors.append((peer_id, error)),
    )
    room_client.ws = FakeClientSocket()

    await room_client.handle_message({"event": "user-joined", "data": "p2"})
    await room_client.handle_message({"event": "answer", "data": {"from": "p2", "answer": {"type": "answer", "sdp": ANSWER_SDP}}})

    assert "p2" not in room_client.sessions
    assert engines[0].closed
    assert [(peer, e.code) for peer, e in errors] == [("p2", HANDLE_ANSWER_FAILED)]


async def test_room_info_and_error_events(room_client):
    await room_client.handle_message({"event": "room-info", "data": {"roomId": "abc123", "participants": ["p7"]}})
    await room_client.handle_message({"event": "error", "data": {"message": "nope"}})

    assert room_client.participants == ["p7"]
    assert room_client.sessions == {}


async def test_run_processes_frames_in_order(room_client):
    room_client.ws = FakeClientSocket([
        {"event": "user-joined", "data": "p2"},
        {"event": "user-left", "data": "p2"},
    ])
    await room_client.ws.incoming.put("not json")

    await room_client.run()

    assert room_client.ws.events("offer")
    assert room_client.sessions == {}


async def test_leave_and_close(room_client, engines):
    await room_client.join("abc123")
    await room_client.handle_message({"event": "user-joined", "data": "p2"})

    await room_client.leave()
    socket = room_client.ws
    await room_client.close()

    assert socket.events("leave-room") == [{"event": "leave-room", "data": "abc123"}]
    assert room_client.sessions == {}
    assert engines[0].closed
    assert socket.closed
    assert room_client.ws is None
