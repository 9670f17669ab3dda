"""
FastAPI app served by each worker. One app instance per worker thread, bound
to that worker's Connection: the WebSocket `/query` endpoint plus health/version.
"""
from __future__ import annotations


from fastapi import FastAPI

from .services.connection import Connection
from .services.replies import StaticReplies, build_static_replies
from .version import APP_NAME, __version__


def create_app(conn: Connection, replies: StaticReplies | None = None) -> FastAPI:
    app = FastAPI(title=f"{APP_NAME}-api", version=__version__)
    app.state.fridge_conn = conn
    app.state.fridge_replies = replies or build_static_replies()

    # Include routers
    from .routes import base as base_routes
    from .routes import query as query_routes

    app.include_router(base_routes.router)
    app.include_router(query_routes.router)
    return app
