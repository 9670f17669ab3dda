import json, logging, time, uuid
from typing import Optional

logger = logging.getLogger("fridgedb.requests")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)


class RequestLogContext:
    """Timing/outcome record for one request served by a worker."""

    def __init__(self, action: str, peer: Optional[str] = None):
        self.action = action
        self.peer = peer
        self.request_id = str(uuid.uuid4())
        self.start = time.perf_counter()
        self.payload = None
        self.reply = None

    def set_payload(self, obj): self.payload = obj
    def set_reply(self, obj): self.reply = obj

    def write(self, result: str = "OK", err: Optional[str] = None):
        elapsed_ms = int((time.perf_counter() - self.start) * 1000)
        rec = {
            "request_id": self.request_id,
            "action": self.action,
            "peer": self.peer,
            "result": result,
            "err_msg": err,
            "latency_ms": elapsed_ms,
        }
        if self.payload is not None:
            rec["payload_bytes"] = len(self.payload)
        if self.reply is not None:
            rec["reply_bytes"] = len(self.reply)
        line = json.dumps(rec, ensure_ascii=False)
        if result == "OK":
            logger.debug(line)
        else:
            logger.warning(line)
        return rec
