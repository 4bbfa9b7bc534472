"""
Integration tests for the /ws push channel, in-process delivery mode.

Each test opens real WebSocket sessions through TestClient next to plain HTTP
calls on the same app.
"""

import pytest
from fastapi import WebSocketDisconnect

from conftest import ADMIN, BUYER, FLAT_ID, OTHER_BUYER, SELLER, auth_headers, token_for


def ws_url(actor):
    return f"/ws?token={token_for(actor)}"


def open_conversation(client):
    response = client.post("/conversations/find-or-create", json={"property_id": str(FLAT_ID)}, headers=auth_headers(BUYER))
    return response.json()["id"]


def receive_until(ws, event_type, limit=5):
    for _ in range(limit):
        event = ws.receive_json()
        if event["type"] == event_type:
            return event
    raise AssertionError(f"no {event_type} event received")


@pytest.mark.integration
class TestHandshake:

    def test_connected_event(self, app_client):
        with app_client.websocket_connect(ws_url(SELLER)) as ws:
            event = ws.receive_json()

        assert event["type"] == "connected"
        assert event["data"]["user_id"] == SELLER.id
        assert event["data"]["role"] == "seller"

    @pytest.mark.parametrize("url", ["/ws", "/ws?token=garbage"])
    def test_bad_token_closed_with_4401(self, app_client, url):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with app_client.websocket_connect(url) as ws:
                ws.receive_json()

        assert exc_info.value.code == 4401

    def test_ping_pong(self, app_client):
        with app_client.websocket_connect(ws_url(BUYER)) as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})

            assert ws.receive_json()["type"] == "pong"

    def test_presence_while_connected(self, app_client):
        with app_client.websocket_connect(ws_url(SELLER)) as ws:
            ws.receive_json()
            online = app_client.get(f"/presence/{SELLER.id}", headers=auth_headers(BUYER)).json()

        assert online["online"] is True


@pytest.mark.integration
class TestPush:

    def test_http_message_pushed_to_counterpart_and_admin(self, app_client):
        cid = open_conversation(app_client)

        with app_client.websocket_connect(ws_url(SELLER)) as seller_ws, app_client.websocket_connect(ws_url(ADMIN)) as admin_ws:
            seller_ws.receive_json()
            admin_ws.receive_json()

            sent = app_client.post(f"/conversations/{cid}/messages", json={"text": "Is this available?"}, headers=auth_headers(BUYER)).json()

            for ws in (seller_ws, admin_ws):
                event = receive_until(ws, "message:new")
                assert event["conversation_id"] == cid
                assert event["message"]["id"] == sent["id"]
                assert event["message"]["body"] == "Is this available?"

    def test_send_over_socket_acks_sender(self, app_client):
        cid = open_conversation(app_client)

        with app_client.websocket_connect(ws_url(BUYER)) as buyer_ws, app_client.websocket_connect(ws_url(SELLER)) as seller_ws:
            buyer_ws.receive_json()
            seller_ws.receive_json()

            buyer_ws.send_json({"type": "message", "conversation_id": cid, "text": "Hello!", "client_message_id": "tmp-1"})

            ack = receive_until(buyer_ws, "ack")
            assert ack["data"]["client_message_id"] == "tmp-1"
            assert ack["data"]["message"]["body"] == "Hello!"

            pushed = receive_until(seller_ws, "message:new")
            assert pushed["message"]["id"] == ack["data"]["message"]["id"]

        stored = app_client.get(f"/conversations/{cid}/messages", headers=auth_headers(SELLER)).json()
        assert [m["body"] for m in stored["items"]] == ["Hello!"]

    def test_socket_errors_are_events(self, app_client):
        cid = open_conversation(app_client)

        with app_client.websocket_connect(ws_url(BUYER)) as ws:
            ws.receive_json()

            ws.send_json({"type": "message", "conversation_id": cid, "text": "  "})
            empty = ws.receive_json()
            ws.send_json({"type": "message"})
            missing = ws.receive_json()
            ws.send_text("not json")
            garbage = ws.receive_json()
            ws.send_json({"type": "dance"})
            unknown = ws.receive_json()

        assert empty["type"] == "error" and empty["data"]["code"] == "INVALID_INPUT"
        assert missing["type"] == "error" and missing["data"]["code"] == "INVALID_INPUT"
        assert garbage["type"] == "error"
        assert unknown["type"] == "error"

    def test_outsider_cannot_join_or_post(self, app_client):
        cid = open_conversation(app_client)

        with app_client.websocket_connect(ws_url(OTHER_BUYER)) as ws:
            ws.receive_json()

            ws.send_json({"type": "join", "conversation_id": cid})
            join = ws.receive_json()
            ws.send_json({"type": "message", "conversation_id": cid, "text": "hi"})
            post = ws.receive_json()

        assert join["type"] == "error" and join["data"]["code"] == "FORBIDDEN"
        assert post["type"] == "error" and post["data"]["code"] == "FORBIDDEN"

    def test_typing_reaches_room_members(self, app_client):
        cid = open_conversation(app_client)

        with app_client.websocket_connect(ws_url(BUYER)) as buyer_ws, app_client.websocket_connect(ws_url(SELLER)) as seller_ws:
            buyer_ws.receive_json()
            seller_ws.receive_json()

            seller_ws.send_json({"type": "join", "conversation_id": cid})
            assert seller_ws.receive_json() == {"type": "joined", "data": {"conversation_id": cid}}

            buyer_ws.send_json({"type": "typing_start", "conversation_id": cid})

            typing = seller_ws.receive_json()
            assert typing == {"type": "typing_start", "conversation_id": cid, "user_id": BUYER.id}

            seller_ws.send_json({"type": "leave", "conversation_id": cid})
            assert seller_ws.receive_json()["type"] == "left"

    def test_binary_frame_is_an_error_event(self, app_client):
        with app_client.websocket_connect(ws_url(BUYER)) as ws:
            ws.receive_json()

            ws.send_bytes(b"\x00\x01")
            error = ws.receive_json()
            ws.send_json({"type": "ping"})
            pong = ws.receive_json()

        assert error["type"] == "error" and error["data"]["code"] == "INVALID_INPUT"
        assert pong["type"] == "pong"
