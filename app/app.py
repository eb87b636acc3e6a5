"""
FastAPI backend: hosts the explorer state machine for the Streamlit frontend.

Run as a script:
    python app/app.py

Or as a module:
    uvicorn app.app:app --reload

Clients for the content service (OpenAI) and the repository store (Supabase)
are built once in the lifespan hook; a missing credential yields an
UNCONFIGURED client and the corresponding features degrade instead of
failing the startup.

Every endpoint below returns the full state snapshot (camelCase JSON):

    GET  /health                     {content_configured, store_configured}
    GET  /state
    POST /mode                       {"mode": "explorer" | "repository"}
    POST /search                     {"q": "..."}
    POST /universities/select        {"name": "..."}
    POST /programs/select            {"name": "..."}
    POST /back
    POST /university/save            toggle saved status
    POST /university/location        {"lat": .., "lng": ..}   (both optional)
    POST /university/saved-status

Logs each request and wall-clock response time to stdout and logs/app.log
(rotating, 5 MB max, 3 backups).
"""

import logging
import logging.handlers
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

# Ensure project root is on sys.path when running as a script (python app/app.py)
sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog.config import Settings, build_openai_client, build_store_client
from catalog.models import UserLocation
from catalog.state import AppState, Explorer, Mode
from services.content import ContentService
from services.repository import RepositoryStore

LOG_DIR  = Path(__file__).parent.parent / "logs"
LOG_FILE = LOG_DIR / "app.log"


def _setup_logging() -> None:
    LOG_DIR.mkdir(exist_ok=True)
    fmt = logging.Formatter("%(asctime)s  %(levelname)s  %(message)s")

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(fmt)

    # Rotate at 5 MB, keep 3 backups
    rotating = logging.handlers.RotatingFileHandler(
        LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    rotating.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.addHandler(stream)
    root.addHandler(rotating)


_setup_logging()
log = logging.getLogger("api")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class ModeRequest(BaseModel):
    mode: Mode


class SearchRequest(BaseModel):
    q: str


class SelectRequest(BaseModel):
    name: str


class LocationRequest(BaseModel):
    lat: float | None = None
    lng: float | None = None


class HealthResponse(BaseModel):
    content_configured: bool
    store_configured: bool


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(explorer: Explorer | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Build the API.  Tests pass a ready Explorer wired to fakes; otherwise the
    clients are created from the environment when the app starts.
    """
    holder: dict[str, Explorer] = {}

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if explorer is not None:
            holder["explorer"] = explorer
            yield
            return

        cfg = settings or Settings.from_env()
        openai_client = build_openai_client(cfg)
        store = RepositoryStore(build_store_client(cfg), table=cfg.supabase_table)
        content = ContentService(openai_client, cfg)
        log.info("Content service configured: %s  (model=%s, fallback=%s)",
                 content.configured, cfg.content_model, cfg.fallback_model)
        log.info("Repository store configured: %s", store.is_configured())
        holder["explorer"] = Explorer(content, store)

        yield  # server runs here

        await store.aclose()
        if content.configured:
            await openai_client.close()

    app = FastAPI(title="University Explorer", lifespan=lifespan)

    def _explorer() -> Explorer:
        if "explorer" not in holder:
            raise HTTPException(status_code=503, detail="Explorer not initialised.")
        return holder["explorer"]

    @app.middleware("http")
    async def _timing(request: Request, call_next):
        t0 = time.perf_counter()
        response = await call_next(request)
        log.info("%s %s  %d  %.2fs", request.method, request.url.path,
                 response.status_code, time.perf_counter() - t0)
        return response

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        ex = _explorer()
        return HealthResponse(content_configured=ex.content_configured, store_configured=ex.store_configured)

    @app.get("/state", response_model=AppState)
    async def state() -> AppState:
        return _explorer().state

    @app.post("/mode", response_model=AppState)
    async def switch_mode(req: ModeRequest) -> AppState:
        return await _explorer().switch_mode(req.mode)

    @app.post("/search", response_model=AppState)
    async def search(req: SearchRequest) -> AppState:
        if not req.q.strip():
            raise HTTPException(status_code=400, detail="Query must not be empty.")
        return await _explorer().submit_search(req.q)

    @app.post("/universities/select", response_model=AppState)
    async def select_university(req: SelectRequest) -> AppState:
        ex = _explorer()
        university = next((u for u in ex.state.universities if u.name == req.name), None)
        if university is None:
            raise HTTPException(status_code=404, detail=f"{req.name!r} is not in the current list.")
        return await ex.select_university(university)

    @app.post("/programs/select", response_model=AppState)
    async def select_program(req: SelectRequest) -> AppState:
        ex = _explorer()
        parent = ex.state.selected_university
        if parent is None:
            return ex.state
        program = parent.find_program(req.name)
        if program is None:
            raise HTTPException(status_code=404, detail=f"{req.name!r} is not offered by {parent.name}.")
        return await ex.select_program(program)

    @app.post("/back", response_model=AppState)
    async def back() -> AppState:
        return _explorer().back()

    @app.post("/university/save", response_model=AppState)
    async def toggle_save() -> AppState:
        return await _explorer().toggle_save()

    @app.post("/university/location", response_model=AppState)
    async def location(req: LocationRequest | None = None) -> AppState:
        user_location = None
        if req is not None and req.lat is not None and req.lng is not None:
            user_location = UserLocation(lat=req.lat, lng=req.lng)
        return await _explorer().load_location(user_location)

    @app.post("/university/saved-status", response_model=AppState)
    async def saved_status() -> AppState:
        return await _explorer().refresh_saved_status()

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    log.info("=== University Explorer: launching server on http://0.0.0.0:8000 ===")
    uvicorn.run(app, host="0.0.0.0", port=8000, reload=False)
