OFFER = {"type": "offer", "sdp": "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=-\r\nt=0 0\r\na=extmap-allow-mixed\r\n"}


def test_index(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "running" in response.text


def test_each_connection_gets_a_fresh_participant_id(client):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        id1 = ws1.receive_json()["data"]["participantId"]
        id2 = ws2.receive_json()["data"]["participantId"]
    assert id1 and id2 and id1 != id2


def test_join_offer_and_disconnect_flow(client, directory):
    with client.websocket_connect("/ws") as ws1:
        p1 = ws1.receive_json()["data"]["participantId"]
        ws1.send_json({"event": "join-room", "data": "abc123"})
        assert ws1.receive_json() == {"event": "room-info", "data": {"roomId": "abc123", "participants": []}}
        assert directory.participants_of("abc123") == [p1]

        with client.websocket_connect("/ws") as ws2:
            p2 = ws2.receive_json()["data"]["participantId"]
            ws2.send_json({"event": "join-room", "data": "abc123"})

            assert ws1.receive_json() == {"event": "user-joined", "data": p2}
            assert ws2.receive_json() == {"event": "room-info", "data": {"roomId": "abc123", "participants": [p1]}}

            ws1.send_json({"event": "offer", "data": {"to": p2, "offer": OFFER}})
            assert ws2.receive_json() == {"event": "offer", "data": {"from": p1, "offer": OFFER}}

            ws2.send_json({"event": "answer", "data": {"to": p1, "answer": {"type": "answer", "sdp": "a"}}})
            assert ws1.receive_json() == {"event": "answer", "data": {"from": p2, "answer": {"type": "answer", "sdp": "a"}}}

            ws2.send_json({"event": "ice-candidate", "data": {"to": p1, "candidate": None}})
            assert ws1.receive_json() == {"event": "ice-candidate", "data": {"from": p2, "candidate": None}}

        assert ws1.receive_json() == {"event": "user-left", "data": p2}
        assert directory.participants_of("abc123") == [p1]

    assert directory.participants_of("abc123") == []
    assert not directory.room_exists("abc123")
    assert directory.participants() == []


def test_malformed_frame_gets_error_and_connection_survives(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("{broken")
        reply = ws.receive_json()
        assert reply["event"] == "error"
        assert "message" in reply["data"]

        ws.send_json({"event": "join-room", "data": "r1"})
        assert ws.receive_json()["event"] == "room-info"


def test_offer_to_missing_target_is_dropped(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "offer", "data": {"to": "nobody", "offer": OFFER}})
        ws.send_json({"event": "join-room", "data": "r1"})
        # the next frame is the join reply: nothing came back for the offer
        assert ws.receive_json()["event"] == "room-info"


def test_leave_room_over_websocket(client, directory):
    with client.websocket_connect("/ws") as ws1, client.websocket_connect("/ws") as ws2:
        ws1.receive_json()
        p2 = ws2.receive_json()["data"]["participantId"]
        ws1.send_json({"event": "join-room", "data": "r1"})
        ws1.receive_json()
        ws2.send_json({"event": "join-room", "data": "r1"})
        ws2.receive_json()
        ws1.receive_json()

        ws2.send_json({"event": "leave-room", "data": "r1"})
        assert ws1.receive_json() == {"event": "user-left", "data": p2}
        assert p2 not in directory.participants_of("r1")
