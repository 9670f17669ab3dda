from __future__ import annotations

# fridgedb/services/replies.py
import json
from dataclasses import dataclass


def _reply(message: str | None = None) -> str:
    body: dict = {"success": False}
    if message is not None:
        body["message"] = message
    return json.dumps(body, ensure_ascii=False)


@dataclass(frozen=True)
class StaticReplies:
    """Fixed error replies of the wire protocol, rendered once."""

    not_json: str
    no_such_request: str
    internal_failure: str

    def field_missing(self, field: str) -> str:
        return _reply(f"error: {field} not defined")

    def field_malformed(self, field: str) -> str:
        return _reply(f"error: {field} malformed")


def build_static_replies() -> StaticReplies:
    return StaticReplies(
        not_json=_reply("error: not JSON"),
        no_such_request=_reply("error: no such request"),
        internal_failure=_reply(),
    )
