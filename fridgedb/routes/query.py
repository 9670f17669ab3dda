from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket

from ..logs import RequestLogContext

router = APIRouter()
logger = logging.getLogger(__name__)


def _message_text(message: dict) -> str:
    text = message.get("text")
    if text is not None:
        return text
    return (message.get("bytes") or b"").decode("utf-8", errors="replace")


@router.websocket("/query")
async def ws_query(websocket: WebSocket):
    """
    One reply per inbound frame. The query runs synchronously on this worker's
    event loop; other sockets of the same worker wait until it returns.
    """
    conn = websocket.app.state.fridge_conn
    replies = websocket.app.state.fridge_replies
    peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else None
    await websocket.accept()
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            break
        text = _message_text(message)
        log = RequestLogContext("QUERY", peer)
        log.set_payload(text)
        try:
            reply = conn.query(text)
            log.set_reply(reply)
            log.write("OK")
        except Exception:
            logger.exception(f"Unhandled error while serving {peer}")
            reply = replies.internal_failure
            log.write("ERROR", "internal error")
        await websocket.send_text(reply)
