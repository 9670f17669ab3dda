from __future__ import annotations

import json


def test_health_and_version(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert sorted(body["commands"]) == ["AddItemsToFridge", "GetItemsInFridge"]

    v = client.get("/version")
    assert v.status_code == 200
    assert v.json().get("app") == "fridge-db"


def test_websocket_round_trip(client):
    item = {"name": "Milk", "unit": "L", "expireTime": 7, "amount": 1, "date": 100}
    with client.websocket_connect("/query") as ws:
        ws.send_text(json.dumps({"request": "GetItemsInFridge"}))
        assert json.loads(ws.receive_text()) == {"success": True, "values": []}

        ws.send_text(json.dumps({"request": "AddItemsToFridge", "items": [item]}))
        assert json.loads(ws.receive_text()) == {"success": True}

        ws.send_text(json.dumps({"request": "GetItemsInFridge"}))
        assert json.loads(ws.receive_text())["values"] == [
            {"name": "Milk", "amount": 1, "date": 100, "expireDate": 107}
        ]


def test_websocket_errors_keep_socket_open(client):
    with client.websocket_connect("/query") as ws:
        ws.send_text("{{{")
        assert json.loads(ws.receive_text()) == {"success": False, "message": "error: not JSON"}
        ws.send_text(json.dumps({"request": "Nope"}))
        assert json.loads(ws.receive_text())["message"] == "error: no such request"
        ws.send_bytes(json.dumps({"request": "GetItemsInFridge"}).encode("utf-8"))
        assert json.loads(ws.receive_text())["success"] is True


def test_unexpected_exception_is_a_generic_failure(client, conn, monkeypatch):
    def boom(text):
        raise RuntimeError("internal detail")

    monkeypatch.setattr(conn, "query", boom)
    with client.websocket_connect("/query") as ws:
        ws.send_text(json.dumps({"request": "GetItemsInFridge"}))
        reply = ws.receive_text()
        assert json.loads(reply) == {"success": False}
        assert "internal detail" not in reply
        ws.send_text("again")
        assert json.loads(ws.receive_text()) == {"success": False}
