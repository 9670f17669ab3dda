from __future__ import annotations

# fridgedb/repository/statements.py
from dataclasses import dataclass
from enum import Enum
from sqlite3 import Row
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from ..domain.items import FridgeItem, round_amount


# Order matters: the view joins tables that must already exist.
INITIALIZERS: Tuple[str, ...] = (
    "CREATE TABLE IF NOT EXISTS ItemClasses("
    "id INTEGER PRIMARY KEY AUTOINCREMENT,"
    "name TEXT UNIQUE,"
    "unit TEXT,"
    "expireTime INTEGER);",

    "CREATE TABLE IF NOT EXISTS ItemAmounts("
    "id INTEGER PRIMARY KEY AUTOINCREMENT,"
    "itemClassId INTEGER,"
    "amount REAL,"
    "date INTEGER);",

    # reserved, no operation reads or writes it yet
    "CREATE TABLE IF NOT EXISTS ShoppingList("
    "id INTEGER PRIMARY KEY AUTOINCREMENT,"
    "itemClassId INTEGER,"
    "amount REAL,"
    "date INTEGER);",

    "CREATE VIEW IF NOT EXISTS GetItemsInFridge("
    "id, name, amount, unit, date, expireDate) "
    "AS SELECT object.id, class.name, object.amount, class.unit, object.date, object.date + class.expireTime "
    "FROM ItemClasses AS class "
    "JOIN ItemAmounts AS object ON class.id = object.itemClassId "
    "ORDER BY object.date + class.expireTime, class.name;",
)

BEGIN_SQL = "BEGIN IMMEDIATE;"
COMMIT_SQL = "COMMIT;"
ROLLBACK_SQL = "ROLLBACK;"


class Command(str, Enum):
    GET_ITEMS_IN_FRIDGE = "GetItemsInFridge"
    ADD_ITEMS_TO_FRIDGE = "AddItemsToFridge"


class PayloadError(ValueError):
    """A required payload field is present but cannot be bound."""

    def __init__(self, field: str, detail: str = ""):
        super().__init__(f"{field}: {detail}" if detail else field)
        self.field = field


# bind context: one per execution of an operation's statement sequence
BindContext = Dict[str, Any]


@dataclass(frozen=True)
class StatementDef:
    sql: str
    bind: Callable[[BindContext], tuple] = lambda ctx: ()
    decode: Optional[Callable[[Row], Any]] = None
    # when set, the decoded row is stored in the bind context for the
    # following statements instead of being returned to the client
    capture: Optional[str] = None


@dataclass(frozen=True)
class Operation:
    command: Command
    statements: Tuple[StatementDef, ...]
    prepare: Callable[[Mapping[str, Any]], List[BindContext]] = lambda payload: [{}]
    required: Optional[str] = None
    transactional: bool = False
    returns_values: bool = False


# ---------------- GetItemsInFridge ----------------

def decode_fridge_row(row: Row) -> dict:
    return {
        "name": row["name"],
        "amount": round_amount(float(row["amount"] or 0.0)),
        "date": row["date"],
        "expireDate": row["expireDate"],
    }


# ---------------- AddItemsToFridge ----------------

def prepare_add_items(payload: Mapping[str, Any]) -> List[BindContext]:
    """Validate the whole `items` batch before anything touches the store."""
    raw_items = payload["items"]
    if not isinstance(raw_items, list):
        raise PayloadError("items", "expected a list")
    out: List[BindContext] = []
    for i, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise PayloadError("items", f"element {i} is not an object")
        try:
            out.append({"item": FridgeItem(**raw)})
        except ValidationError as e:
            raise PayloadError("items", f"element {i}: {e.errors()}")
    return out


def bind_upsert_class(ctx: BindContext) -> tuple:
    item: FridgeItem = ctx["item"]
    return (item.name, item.unit, item.expireTime)


def bind_class_name(ctx: BindContext) -> tuple:
    return (ctx["item"].name,)


def bind_insert_amount(ctx: BindContext) -> tuple:
    item: FridgeItem = ctx["item"]
    return (ctx["itemClassId"], item.amount, item.date)


def decode_class_id(row: Row) -> int:
    return int(row["id"])


# ---------------- Registry ----------------

OPERATIONS: Dict[Command, Operation] = {
    Command.GET_ITEMS_IN_FRIDGE: Operation(
        command=Command.GET_ITEMS_IN_FRIDGE,
        statements=(
            StatementDef(
                sql="SELECT * FROM GetItemsInFridge;",
                decode=decode_fridge_row,
            ),
        ),
        returns_values=True,
    ),
    Command.ADD_ITEMS_TO_FRIDGE: Operation(
        command=Command.ADD_ITEMS_TO_FRIDGE,
        statements=(
            StatementDef(
                sql="INSERT INTO ItemClasses (name, unit, expireTime) VALUES (?, ?, ?) "
                    "ON CONFLICT(name) DO UPDATE SET unit = excluded.unit, expireTime = excluded.expireTime;",
                bind=bind_upsert_class,
            ),
            StatementDef(
                sql="SELECT id FROM ItemClasses WHERE name = ?;",
                bind=bind_class_name,
                decode=decode_class_id,
                capture="itemClassId",
            ),
            StatementDef(
                sql="INSERT INTO ItemAmounts (itemClassId, amount, date) VALUES (?, ?, ?);",
                bind=bind_insert_amount,
            ),
        ),
        prepare=prepare_add_items,
        required="items",
        transactional=True,
    ),
}
