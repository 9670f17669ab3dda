#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Fridge inventory service (SQLite + WebSocket)

Commands:
  init                Create the schema in the configured database (idempotent)
  serve               Start the worker pool and serve /query until interrupted
  add-item            Stock one item through the AddItemsToFridge request
  report              Print fridge contents (soonest to expire first) and export CSV

Notes:
- Settings come from FRIDGE_* environment variables, then config.yaml, then defaults.
- workers = 0 starts one worker per CPU; every worker listens on the same port.
"""

import argparse
import datetime as dt
import json
import os
import sqlite3
import sys

import pandas as pd

from fridgedb.db import FridgeDB, read_config
from fridgedb.domain.items import expire_date
from fridgedb.logs import configure_logging
from fridgedb.pool import WorkerPool

# ---------------- CFG helpers ----------------

def open_db(cfg) -> FridgeDB:
    return FridgeDB(cfg["db_path"], cfg["busy_timeout_ms"])


def open_conn_or_exit(cfg):
    conn = open_db(cfg).open_connection()
    if conn is None:
        raise SystemExit(f"Cannot open database {cfg['db_path']}")
    return conn


# ---------------- Commands ----------------

def cmd_init(args):
    cfg = read_config(args.config)
    conn = open_conn_or_exit(cfg)
    ok = conn.initialized
    conn.close()
    if not ok:
        raise SystemExit("Schema initialization failed, see log.")
    print("DB initialized:", cfg["db_path"])


def cmd_serve(args):
    cfg = read_config(args.config)
    workers = args.workers if args.workers is not None else cfg["workers"]
    port = args.port if args.port is not None else cfg["port"]
    host = args.host or cfg["host"]

    pool = WorkerPool(open_db(cfg), workers, port, host)
    print(f"Serving {cfg['db_path']} on ws://{host}:{port}/query with {len(pool.workers)} worker(s):",
          "OK" if pool.ok else "Not OK")
    if not pool.ok:
        raise SystemExit(1)
    try:
        pool.wait()
    except KeyboardInterrupt:
        pool.stop()
        pool.wait()


def cmd_add_item(args):
    cfg = read_config(args.config)
    request = {
        "request": "AddItemsToFridge",
        "items": [{
            "name": args.name,
            "unit": args.unit,
            "expireTime": args.expire_time,
            "amount": args.amount,
            "date": args.date,
        }],
    }
    with open_conn_or_exit(cfg) as conn:
        reply = json.loads(conn.query(json.dumps(request, ensure_ascii=False)))
    if not reply.get("success"):
        raise SystemExit(f"AddItemsToFridge failed: {reply}")
    print(f"Added {args.amount} {args.unit} of {args.name}, expires on {expire_date(args.date, args.expire_time)}")


def cmd_report(args):
    cfg = read_config(args.config)
    # make sure the view exists even on a fresh file
    open_conn_or_exit(cfg).close()

    conn = sqlite3.connect(cfg["db_path"])
    try:
        df = pd.read_sql_query(
            "SELECT name, amount, unit, date, expireDate FROM GetItemsInFridge",
            conn,
        )
    finally:
        conn.close()

    pd.set_option("display.max_rows", 200)
    pd.set_option("display.width", 160)

    print("\n=== Items in fridge ===")
    if not df.empty:
        print(df)
    else:
        print("(empty)")

    out_dir = args.out or os.path.join(os.getcwd(), "exports")
    os.makedirs(out_dir, exist_ok=True)
    today = dt.datetime.now().strftime("%Y%m%d")
    out_path = os.path.join(out_dir, f"fridge_{today}.csv")
    df.to_csv(out_path, index=False, encoding="utf-8-sig")
    print(f"\nCSV exported to {out_path}")
    return out_path


# ---------------- Entry ----------------

def main(argv=None):
    parser = argparse.ArgumentParser(description="Fridge inventory service (SQLite + WebSocket)")
    parser.add_argument("--config", default=None, help="path to config.yaml")
    sub = parser.add_subparsers()

    p_init = sub.add_parser("init", help="create the schema")
    p_init.set_defaults(func=cmd_init)

    p_serve = sub.add_parser("serve", help="run the worker pool")
    p_serve.add_argument("--workers", type=int, required=False, help="0 = one per CPU")
    p_serve.add_argument("--port", type=int, required=False)
    p_serve.add_argument("--host", required=False)
    p_serve.set_defaults(func=cmd_serve)

    p_add = sub.add_parser("add-item", help="stock one item")
    p_add.add_argument("--name", required=True)
    p_add.add_argument("--unit", required=True)
    p_add.add_argument("--expire-time", required=True, type=int, help="days until expiry")
    p_add.add_argument("--amount", required=True, type=float)
    p_add.add_argument("--date", required=True, type=int, help="acquisition date (epoch days)")
    p_add.set_defaults(func=cmd_add_item)

    p_rep = sub.add_parser("report", help="print contents and export CSV")
    p_rep.add_argument("--out", required=False, help="export directory (default ./exports)")
    p_rep.set_defaults(func=cmd_report)

    args = parser.parse_args(argv)
    cfg = read_config(args.config)
    configure_logging(cfg["log_level"])
    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
