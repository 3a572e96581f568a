from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from mangum import Mangum
from starlette.concurrency import run_in_threadpool
from strawberry.fastapi import GraphQLRouter

from .config import Settings, load_dotenv_file
from .domain import to_iso8601
from .errors import StoreUnavailableError
from .realtime import Broadcaster, SocketIOFanout
from .schema import schema
from .seed import seed_sample_data
from .service import MembershipService
from .store import Store, build_store

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

INDEX_HTML = """<!doctype html>
<html>
  <head><title>Event Check-In API</title></head>
  <body>
    <h1>Event Check-In API</h1>
    <ul>
      <li><strong>POST /graphql</strong>: queries <code>events</code>, <code>me(email)</code>;
        mutations <code>joinEvent(eventId, userEmail)</code>, <code>leaveEvent(eventId, userEmail)</code></li>
      <li><strong>GET /health</strong>: store reachability</li>
      <li><strong>Socket.IO</strong>: emit <code>joinEventRoom</code> / <code>leaveEventRoom</code>;
        receive <code>userJoined</code>, <code>userLeft</code>, <code>eventUpdated</code></li>
    </ul>
  </body>
</html>
"""


def create_app(
    settings: Settings | None = None,
    store: Store | None = None,
    broadcaster: Broadcaster | None = None,
) -> FastAPI:
    if settings is None:
        repo_root = Path(__file__).resolve().parents[3]
        load_dotenv_file(repo_root)
        settings = Settings.from_env()

    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    if store is None:
        store = build_store(settings)
    if broadcaster is None:
        broadcaster = SocketIOFanout(cors_allowed_origins=settings.cors_origins)
    service = MembershipService(store, broadcaster)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.seed_sample_data and not await run_in_threadpool(store.list_events):
            await run_in_threadpool(seed_sample_data, store)
        await broadcaster.start()
        try:
            yield
        finally:
            await broadcaster.stop()
            await run_in_threadpool(store.close)

    app = FastAPI(title="Event Check-In", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.broadcaster = broadcaster
    app.state.service = service

    async def get_context() -> dict:
        return {"service": service}

    app.include_router(GraphQLRouter(schema, context_getter=get_context), prefix="/graphql")

    @app.get("/", response_class=HTMLResponse)
    def index():
        return INDEX_HTML

    @app.get("/health")
    def health():
        try:
            store.ping()
        except StoreUnavailableError as exc:
            return JSONResponse(
                status_code=500,
                content={"status": "unhealthy", "database": "disconnected", "error": exc.message},
            )
        return {
            "status": "healthy",
            "database": "connected",
            "timestamp": to_iso8601(datetime.now(timezone.utc)),
        }

    return app


def with_socketio(app: FastAPI) -> socketio.ASGIApp:
    """Serve Socket.IO next to the FastAPI routes on the same port."""

    broadcaster = app.state.broadcaster
    if not isinstance(broadcaster, SocketIOFanout):
        raise RuntimeError("Socket.IO requires the SocketIOFanout broadcaster")
    return socketio.ASGIApp(broadcaster.sio, other_asgi_app=app)


app = create_app()
asgi_app = with_socketio(app)
handler = Mangum(app)
