import pytest
from starlette.websockets import WebSocketDisconnect

from tests.conftest import auth_header, login


@pytest.fixture()
def tokens(client):
    return {
        key: login(client, f"{key}@example.com")
        for key in ("admin", "faculty1", "student1", "student2")
    }


@pytest.fixture()
def room_id(client, users, tokens):
    r = client.get(f"/chat/direct/{users['student2']}", headers=auth_header(tokens["student1"]))
    assert r.status_code == 200, r.text
    return r.json()["id"]


def _join(ws, room_id):
    ws.send_json({"event": "join_room", "data": {"room_id": room_id}})
    assert ws.receive_json() == {"event": "joined_room", "data": {"room_id": room_id}}


# ----------------------------------------------------------------------- REST


def test_direct_room_is_the_same_from_both_sides(client, users, tokens, room_id):
    r = client.get(f"/chat/direct/{users['student1']}", headers=auth_header(tokens["student2"]))

    assert r.json()["id"] == room_id
    assert r.json()["type"] == "direct"
    assert r.json()["participant_ids"] == sorted([users["student1"], users["student2"]])


def test_send_list_and_mark_read(client, users, tokens, room_id):
    a, b = auth_header(tokens["student1"]), auth_header(tokens["student2"])

    sent = client.post(f"/chat/rooms/{room_id}/messages", headers=a, json={"content": "hi"})
    assert sent.status_code == 201, sent.text
    assert sent.json()["read_by"] == [users["student1"]]

    [listed] = client.get(f"/chat/rooms/{room_id}/messages", headers=b).json()
    assert listed["read_by"] == [users["student1"]]

    [room] = client.get("/chat/rooms", headers=b).json()
    assert room["unread_count"] == 1
    assert room["last_message"]["content"] == "hi"

    read = client.post(f"/chat/messages/{listed['id']}/read", headers=b)
    assert read.json()["read_by"] == [users["student1"], users["student2"]]
    assert client.get("/chat/rooms", headers=b).json()[0]["unread_count"] == 0


def test_outsider_cannot_read_or_post(client, tokens, room_id):
    outsider = auth_header(tokens["faculty1"])

    assert client.get(f"/chat/rooms/{room_id}/messages", headers=outsider).status_code == 403
    r = client.post(f"/chat/rooms/{room_id}/messages", headers=outsider, json={"content": "hey"})
    assert r.status_code == 403


def test_page_limit_is_bounded(client, tokens, room_id):
    r = client.get(
        f"/chat/rooms/{room_id}/messages",
        headers=auth_header(tokens["student1"]),
        params={"limit": 500},
    )
    assert r.status_code == 400


def test_group_rooms_are_admin_only(client, users, tokens):
    body = {"name": "Cohort", "participant_ids": [users["student1"], users["student2"]]}

    r = client.post("/chat/group", headers=auth_header(tokens["student1"]), json=body)
    assert r.status_code == 403

    r = client.post("/chat/group", headers=auth_header(tokens["admin"]), json=body)
    assert r.status_code == 201, r.text
    group = r.json()
    assert group["admin_id"] == users["admin"]
    assert users["admin"] in group["participant_ids"]

    r = client.post(
        f"/chat/rooms/{group['id']}/participants",
        headers=auth_header(tokens["admin"]),
        json={"user_id": users["faculty"]},
    )
    assert users["faculty"] in r.json()["participant_ids"]

    r = client.delete(
        f"/chat/rooms/{group['id']}/participants/{users['student2']}",
        headers=auth_header(tokens["student1"]),
    )
    assert r.status_code == 403


# ------------------------------------------------------------------ websocket


def test_message_reaches_every_joined_socket(client, users, tokens, room_id):
    with client.websocket_connect(f"/ws?token={tokens['student1']}") as ws_a, client.websocket_connect(
        f"/ws?token={tokens['student2']}"
    ) as ws_b:
        _join(ws_a, room_id)
        _join(ws_b, room_id)

        ws_a.send_json({"event": "send_message", "data": {"room_id": room_id, "content": "hi"}})

        for ws in (ws_a, ws_b):
            frame = ws.receive_json()
            assert frame["event"] == "receive_message"
            assert frame["data"]["content"] == "hi"
            assert frame["data"]["sender_id"] == users["student1"]
            assert frame["data"]["read_by"] == [users["student1"]]


def test_rest_message_is_pushed_to_sockets(client, tokens, room_id):
    with client.websocket_connect(f"/ws?token={tokens['student2']}") as ws_b:
        _join(ws_b, room_id)

        client.post(
            f"/chat/rooms/{room_id}/messages",
            headers=auth_header(tokens["student1"]),
            json={"content": "over http"},
        )

        frame = ws_b.receive_json()
        assert frame["event"] == "receive_message"
        assert frame["data"]["content"] == "over http"


def test_typing_skips_the_typist(client, users, tokens, room_id):
    with client.websocket_connect(f"/ws?token={tokens['student1']}") as ws_a, client.websocket_connect(
        f"/ws?token={tokens['student2']}"
    ) as ws_b:
        _join(ws_a, room_id)
        _join(ws_b, room_id)

        ws_b.send_json({"event": "typing", "data": {"room_id": room_id, "is_typing": True}})
        frame = ws_a.receive_json()
        assert frame == {
            "event": "user_typing",
            "data": {
                "room_id": room_id,
                "user_id": users["student2"],
                "username": "Student Two",
                "is_typing": True,
            },
        }

        # the next frame B sees is its own message, not the typing event
        ws_b.send_json({"event": "send_message", "data": {"room_id": room_id, "content": "done"}})
        assert ws_b.receive_json()["event"] == "receive_message"
        assert ws_a.receive_json()["event"] == "receive_message"


def test_outsider_cannot_join(client, tokens, room_id):
    with client.websocket_connect(f"/ws?token={tokens['faculty1']}") as ws:
        ws.send_json({"event": "join_room", "data": {"room_id": room_id}})
        frame = ws.receive_json()

    assert frame["event"] == "error"
    assert frame["data"]["status"] == 403


def test_left_socket_stops_receiving(client, tokens, room_id):
    with client.websocket_connect(f"/ws?token={tokens['student2']}") as ws_b:
        _join(ws_b, room_id)
        ws_b.send_json({"event": "leave_room", "data": {"room_id": room_id}})
        assert ws_b.receive_json()["event"] == "left_room"
        assert client.app.state.broadcaster.subscribers(room_id) == 0

        client.post(
            f"/chat/rooms/{room_id}/messages",
            headers=auth_header(tokens["student1"]),
            json={"content": "anyone?"},
        )
        ws_b.send_json({"event": "unknown", "data": {"room_id": room_id}})
        assert ws_b.receive_json()["event"] == "error"


def test_removed_member_socket_stops_receiving(client, users, tokens):
    admin = auth_header(tokens["admin"])
    body = {"name": "Cohort", "participant_ids": [users["student1"], users["student2"]]}
    group_id = client.post("/chat/group", headers=admin, json=body).json()["id"]

    with client.websocket_connect(f"/ws?token={tokens['student1']}") as ws:
        _join(ws, group_id)

        r = client.delete(f"/chat/rooms/{group_id}/participants/{users['student1']}", headers=admin)
        assert r.status_code == 200, r.text
        assert client.app.state.broadcaster.subscribers(group_id) == 0

        client.post(f"/chat/rooms/{group_id}/messages", headers=admin, json={"content": "secret"})
        ws.send_json({"event": "join_room", "data": {"room_id": group_id}})
        frame = ws.receive_json()

    assert frame["event"] == "error"
    assert frame["data"]["status"] == 403


def test_socket_requires_valid_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=garbage") as ws:
            ws.receive_json()

    assert exc.value.code == 1008
