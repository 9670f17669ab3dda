from fastapi import APIRouter, Request

from ..version import APP_NAME, __version__

router = APIRouter()

@router.get("/health")
def health(request: Request):
    conn = request.app.state.fridge_conn
    return {"status": "ok" if conn.initialized else "degraded", "commands": conn.commands}

@router.get("/version")
def version():
    return {"app": APP_NAME, "version": __version__}
