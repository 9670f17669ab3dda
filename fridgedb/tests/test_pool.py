from __future__ import annotations

import json
import socket
import time

import pytest
from websockets.sync.client import connect

from fridgedb import pool as pool_mod
from fridgedb.db import FridgeDB
from fridgedb.pool import WorkerPool, bind_listener


class FakeWorker:
    created = []

    def __init__(self, conn, host, port, replies, name):
        self.conn, self.host, self.port, self.name = conn, host, port, name
        self.started = False
        FakeWorker.created.append(self)

    def start(self):
        self.started = True

    def join(self, timeout=None):
        pass

    def stop(self):
        pass


@pytest.fixture()
def fake_workers(monkeypatch):
    FakeWorker.created = []
    monkeypatch.setattr(pool_mod, "Worker", FakeWorker)
    yield FakeWorker.created
    for w in FakeWorker.created:
        w.conn.close()


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_zero_workers_means_one_per_cpu(fridge_db, fake_workers, monkeypatch):
    monkeypatch.setattr(pool_mod.os, "cpu_count", lambda: 3)
    p = WorkerPool(fridge_db, 0, port=4242)
    assert p.ok
    assert len(p.workers) == 3
    assert all(w.started and w.port == 4242 for w in fake_workers)
    # each worker owns its own connection
    assert len({id(w.conn) for w in fake_workers}) == 3
    p.wait()


def test_missing_connections_degrade_gracefully(fridge_db, fake_workers, monkeypatch):
    real_open = FridgeDB.open_connection
    calls = {"n": 0}

    def flaky(self):
        calls["n"] += 1
        return real_open(self) if calls["n"] % 2 else None

    monkeypatch.setattr(FridgeDB, "open_connection", flaky)
    p = WorkerPool(fridge_db, 4, port=4242)
    assert p.ok
    assert len(p.workers) == 2


def test_pool_not_ok_without_any_connection(tmp_path, fake_workers):
    p = WorkerPool(FridgeDB(str(tmp_path / "missing" / "fridge.db")), 2, port=4242)
    assert p.ok is False
    assert p.workers == []
    p.wait()


def test_listeners_share_one_port():
    port = _free_port()
    a = bind_listener("127.0.0.1", port)
    b = bind_listener("127.0.0.1", port)
    try:
        assert a.getsockname()[1] == b.getsockname()[1] == port
    finally:
        a.close()
        b.close()


def test_live_pool_serves_websocket_queries(fridge_db):
    port = _free_port()
    p = WorkerPool(fridge_db, 2, port=port, host="127.0.0.1")
    try:
        assert p.ok and len(p.workers) == 2
        deadline = time.monotonic() + 10
        while not all(w.started for w in p.workers):
            assert time.monotonic() < deadline, "workers did not start"
            time.sleep(0.05)

        item = {"name": "Milk", "unit": "L", "expireTime": 7, "amount": 1, "date": 100}
        with connect(f"ws://127.0.0.1:{port}/query") as ws:
            ws.send(json.dumps({"request": "AddItemsToFridge", "items": [item]}))
            assert json.loads(ws.recv()) == {"success": True}

        # whichever worker the kernel picks sees the same store
        for _ in range(4):
            with connect(f"ws://127.0.0.1:{port}/query") as ws:
                ws.send(json.dumps({"request": "GetItemsInFridge"}))
                values = json.loads(ws.recv())["values"]
                assert values == [{"name": "Milk", "amount": 1, "date": 100, "expireDate": 107}]
    finally:
        p.stop()
        for w in p.workers:
            w.join(timeout=10)

    assert not any(w.thread.is_alive() for w in p.workers)
    assert all(w.conn.closed for w in p.workers)
