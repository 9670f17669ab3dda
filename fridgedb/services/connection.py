from __future__ import annotations

# fridgedb/services/connection.py
import json
import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from ..repository.statements import (
    BEGIN_SQL,
    COMMIT_SQL,
    INITIALIZERS,
    OPERATIONS,
    ROLLBACK_SQL,
    Command,
    Operation,
    PayloadError,
)
from .replies import StaticReplies

logger = logging.getLogger(__name__)

_BUSY_CODES = (sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED)


class Step(Enum):
    BUSY = "busy"
    ROW = "row"
    DONE = "done"
    MISUSE = "misuse"


def _is_busy(err: sqlite3.Error) -> bool:
    # driver-side errors (wrong binding count etc.) carry no sqlite code
    code = getattr(err, "sqlite_errorcode", None)
    if code is None:
        return False
    # extended codes (e.g. SQLITE_BUSY_SNAPSHOT) keep the primary code in the low byte
    return (code & 0xFF) in _BUSY_CODES


class CompiledStatement:
    """
    One registry SQL text prepared on one connection.

    The driver keeps the prepared plan in its statement cache, so executing the
    same text again reuses it. `valid` is False when the store rejected the SQL;
    an invalid statement must never be stepped.
    """

    def __init__(self, raw: sqlite3.Connection, sql: str, label: str, explain: bool = True):
        self.sql = sql
        self.label = label
        self._raw = raw
        self._params: tuple = ()
        self._cursor: Optional[sqlite3.Cursor] = None
        self.error: Optional[str] = None
        self.valid = self._compile(explain)

    def _compile(self, explain: bool) -> bool:
        if not sqlite3.complete_statement(self.sql):
            self.error = "incomplete statement"
            return False
        if not explain:
            return True
        try:
            # registry SQL carries no literal question marks
            self._raw.execute("EXPLAIN " + self.sql, (None,) * self.sql.count("?")).close()
        except sqlite3.Error as e:
            self.error = str(e)
            return False
        return True

    def bind(self, params: tuple) -> None:
        self._params = tuple(params)

    def step(self) -> Tuple[Step, Optional[sqlite3.Row]]:
        try:
            if self._cursor is None:
                self._cursor = self._raw.execute(self.sql, self._params)
            row = self._cursor.fetchone()
        except sqlite3.Error as e:
            if _is_busy(e):
                return Step.BUSY, None
            self.error = str(e)
            return Step.MISUSE, None
        except (OverflowError, UnicodeEncodeError) as e:
            # parameter the driver cannot convert to a SQLite value
            self.error = str(e)
            return Step.MISUSE, None
        if row is None:
            return Step.DONE, None
        return Step.ROW, row

    def reset(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
        self._cursor = None
        self._params = ()

    def finalize(self) -> None:
        self.reset()
        self.valid = False


@dataclass
class LiveOperation:
    definition: Operation
    statements: Tuple[CompiledStatement, ...]


def parse_request(text: str) -> Optional[Any]:
    """
    Decode the first JSON value in `text`, skipping comments and ignoring
    whatever follows the value. Returns None instead of raising.
    """
    try:
        cleaned = _strip_comments(text)
        value, _ = json.JSONDecoder(parse_constant=_reject_constant).raw_decode(cleaned.lstrip())
    except (ValueError, TypeError):
        return None
    return value


def _reject_constant(name: str):
    # NaN / Infinity / -Infinity are not JSON
    raise ValueError(f"invalid JSON constant {name}")


def _strip_comments(text: str) -> str:
    out: List[str] = []
    i, n = 0, len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
        elif ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end < 0 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end < 0:
                raise ValueError("unterminated comment")
            out.append(" ")
            i = end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


class Connection:
    """
    A fridge database connection: schema set up once, every registry operation
    compiled once, then `query()` serves JSON requests until `close()`.

    Owned by exactly one worker thread for its whole life.
    """

    def __init__(
        self,
        raw: sqlite3.Connection,
        replies: StaticReplies,
        initializers: Iterable[str] = INITIALIZERS,
        operations: Mapping[Command, Operation] | None = None,
    ):
        self._raw: Optional[sqlite3.Connection] = raw
        self._replies = replies
        self._operations: dict[str, LiveOperation] = {}
        self.initialized = self._initialize_schema(tuple(initializers))
        self._begin = CompiledStatement(raw, BEGIN_SQL, "BEGIN", explain=False)
        self._commit = CompiledStatement(raw, COMMIT_SQL, "COMMIT", explain=False)
        self._rollback = CompiledStatement(raw, ROLLBACK_SQL, "ROLLBACK", explain=False)
        self._compile_operations(OPERATIONS if operations is None else operations)

    # ---------------- initialization ----------------

    def _initialize_schema(self, initializers: Tuple[str, ...]) -> bool:
        compiled: List[CompiledStatement] = []
        for sql in initializers:
            stmt = CompiledStatement(self._raw, sql, "initializer", explain=False)
            if not stmt.valid:
                logger.error(f"Failed to compile an initializer statement: {stmt.error}\n{sql}")
                return False
            compiled.append(stmt)

        for stmt in compiled:
            ok = self._drive(stmt, "initializer")
            stmt.finalize()
            if not ok:
                logger.error(f"Failed to run an initializer statement: {stmt.error}\n{stmt.sql}")
                return False
        return True

    def _compile_operations(self, operations: Mapping[Command, Operation]) -> None:
        for command, op in operations.items():
            name = Command(command).value
            compiled = tuple(CompiledStatement(self._raw, s.sql, name) for s in op.statements)
            broken = [c for c in compiled if not c.valid]
            if broken:
                for c in broken:
                    logger.error(f"Failed to compile statement {name}: {c.error}\n{c.sql}")
                for c in compiled:
                    c.finalize()
                continue
            self._operations[name] = LiveOperation(op, compiled)

    @property
    def commands(self) -> List[str]:
        return list(self._operations)

    # ---------------- dispatch ----------------

    def query(self, text: str) -> str:
        request = parse_request(text)
        if request is None:
            return self._replies.not_json
        return self._perform(request)

    def _perform(self, request: Any) -> str:
        name = request.get("request") if isinstance(request, dict) else None
        if not isinstance(name, str):
            return self._replies.no_such_request

        live = self._operations.get(name)
        if live is None:
            return self._replies.no_such_request

        op = live.definition
        if op.required is not None and op.required not in request:
            return self._replies.field_missing(op.required)
        try:
            contexts = op.prepare(request)
        except PayloadError as e:
            logger.info(f"Rejected {name}: {e}")
            return self._replies.field_malformed(e.field)

        values: Optional[list] = [] if op.returns_values else None
        if op.transactional:
            ok = self._run_in_transaction(live, contexts, values)
        else:
            ok = self._run(live, contexts, values)

        reply: dict = {"success": ok}
        if ok and values is not None:
            reply["values"] = values
        return json.dumps(reply, ensure_ascii=False)

    def _run_in_transaction(self, live: LiveOperation, contexts: List[dict], values: Optional[list]) -> bool:
        name = live.definition.command.value
        if not self._drive(self._begin, name):
            return False
        try:
            ok = self._run(live, contexts, values)
        except Exception:
            self._drive(self._rollback, name)
            raise
        if ok and self._drive(self._commit, name):
            return True
        if not self._drive(self._rollback, name):
            logger.error(f"ROLLBACK failed on {name}: {self._rollback.error}")
        return False

    def _run(self, live: LiveOperation, contexts: List[dict], values: Optional[list]) -> bool:
        name = live.definition.command.value
        for ctx in contexts:
            for sdef, stmt in zip(live.definition.statements, live.statements):
                try:
                    stmt.bind(sdef.bind(ctx))
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(f"Cannot bind parameters for {name}: {e!r}\n{stmt.sql}")
                    return False

                if sdef.decode is None:
                    on_row = None
                elif sdef.capture is not None:
                    on_row = _capture_into(ctx, sdef.capture, sdef.decode)
                elif values is not None:
                    on_row = _append_to(values, sdef.decode)
                else:
                    on_row = None

                if not self._drive(stmt, name, on_row):
                    return False
        return True

    def _drive(
        self,
        stmt: CompiledStatement,
        name: str,
        on_row: Optional[Callable[[sqlite3.Row], None]] = None,
    ) -> bool:
        """Step `stmt` until a terminal state; BUSY is retried immediately."""
        if not stmt.valid:
            logger.error(f"Refusing to run invalid statement for {name}\n{stmt.sql}")
            return False
        try:
            while True:
                result, row = stmt.step()
                if result is Step.BUSY:
                    continue
                if result is Step.ROW:
                    if on_row is not None:
                        on_row(row)
                    continue
                if result is Step.DONE:
                    return True
                logger.error(f"SQLITE_MISUSE on {name}: {stmt.error}\n{stmt.sql}")
                return False
        finally:
            stmt.reset()

    # ---------------- teardown ----------------

    @property
    def closed(self) -> bool:
        return self._raw is None

    def close(self) -> None:
        if self._raw is None:
            return
        for live in self._operations.values():
            for stmt in live.statements:
                stmt.finalize()
        for stmt in (self._begin, self._commit, self._rollback):
            stmt.finalize()
        self._operations.clear()
        self._raw.close()
        self._raw = None

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _capture_into(ctx: dict, key: str, decode: Callable[[sqlite3.Row], Any]) -> Callable[[sqlite3.Row], None]:
    def on_row(row: sqlite3.Row) -> None:
        ctx[key] = decode(row)
    return on_row


def _append_to(values: list, decode: Callable[[sqlite3.Row], Any]) -> Callable[[sqlite3.Row], None]:
    def on_row(row: sqlite3.Row) -> None:
        values.append(decode(row))
    return on_row
