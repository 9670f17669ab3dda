"""
Worker pool: N threads, each owning one Connection and one listener.

Every worker binds its own socket on the shared port with SO_REUSEPORT, so the
kernel spreads accepted connections across workers. There is no shared accept
queue and nothing mutable is shared between threads.
"""
from __future__ import annotations

import logging
import os
import socket
import threading
from typing import List, Optional

import uvicorn

from .api import create_app
from .db import FridgeDB
from .services.connection import Connection
from .services.replies import StaticReplies

logger = logging.getLogger(__name__)

DEFAULT_PORT = 32000
LISTEN_BACKLOG = 128


def bind_listener(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        # every worker listens on the same port; the kernel shards accepts
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind((host, port))
        sock.listen(LISTEN_BACKLOG)
    except OSError:
        sock.close()
        raise
    return sock


class Worker:
    """One thread, one Connection, one listening socket, one event loop."""

    def __init__(self, conn: Connection, host: str, port: int, replies: StaticReplies, name: str):
        self.conn = conn
        self.host = host
        self.port = port
        self.replies = replies
        self.server: Optional[uvicorn.Server] = None
        self._stopping = threading.Event()
        self.thread = threading.Thread(target=self._mainloop, name=name)

    @property
    def started(self) -> bool:
        return self.server is not None and self.server.started

    def start(self):
        self.thread.start()

    def _mainloop(self):
        try:
            try:
                sock = bind_listener(self.host, self.port)
            except OSError as e:
                logger.error(f"{self.thread.name}: cannot listen on {self.host}:{self.port}: {e}")
                return
            try:
                config = uvicorn.Config(
                    create_app(self.conn, self.replies),
                    lifespan="off",
                    log_config=None,
                    access_log=False,
                )
                self.server = uvicorn.Server(config)
                if self._stopping.is_set():
                    self.server.should_exit = True
                logger.info(f"{self.thread.name}: listening on {self.host}:{self.port}")
                self.server.run(sockets=[sock])
            finally:
                sock.close()
        finally:
            self.conn.close()
            logger.info(f"{self.thread.name}: stopped")

    def stop(self):
        self._stopping.set()
        server = self.server
        if server is not None:
            server.should_exit = True

    def join(self, timeout: Optional[float] = None):
        self.thread.join(timeout)


class WorkerPool:
    def __init__(self, db: FridgeDB, n_workers: int = 0, port: int = DEFAULT_PORT, host: str = "0.0.0.0"):
        if n_workers <= 0:
            n_workers = os.cpu_count() or 1
        self.port = port
        self.host = host
        self.workers: List[Worker] = []

        for i in range(n_workers):
            conn = db.open_connection()
            if conn is None:
                logger.warning(f"No connection for worker slot {i}, running with one fewer worker")
                continue
            worker = Worker(conn, host, port, db.replies, name=f"fridge-worker-{i}")
            worker.start()
            self.workers.append(worker)

        self.ok = len(self.workers) != 0

    def wait(self):
        for worker in self.workers:
            worker.join()

    def stop(self):
        for worker in self.workers:
            worker.stop()
