import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from teamtrack.config import Settings, settings
from teamtrack.core.firebase import delete_firebase_app, init_firebase_app
from teamtrack.core.firestore_store import FirestoreStore
from teamtrack.core.logging import setup_logging
from teamtrack.core.memory_store import MemoryStore
from teamtrack.core.store import RecordStore
from teamtrack.routes.invitation_routes import router as invitation_router
from teamtrack.routes.project_routes import router as project_router
from teamtrack.routes.user_routes import router as user_router

logger = logging.getLogger(__name__)


def build_store(cfg: Settings) -> RecordStore:
    if cfg.STORE_BACKEND == "memory":
        try:
            # still needed to verify ID tokens
            init_firebase_app(cfg)
        except RuntimeError as e:
            logger.warning("Firebase not initialised, token verification will fail: %s", e)
        logger.info("Using in-memory record store")
        return MemoryStore()

    init_firebase_app(cfg)
    return FirestoreStore(default_timeout=cfg.STORE_TIMEOUT_SECONDS)


def create_app(cfg: Settings = settings, store: RecordStore | None = None) -> FastAPI:
    setup_logging(cfg.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.store = store or build_store(cfg)
        try:
            yield
        finally:
            await app.state.store.close()
            if store is None:
                delete_firebase_app()

    app = FastAPI(
        title=cfg.APP_NAME,
        description="Projects, team invitations and time tracking for small teams.",
        version="0.1.0",
        lifespan=lifespan,
    )

    allowed_origins = [o.strip() for o in cfg.ALLOWED_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", tags=["health"])
    def healthcheck():
        return {"status": "ok", "service": "teamtrack", "version": "0.1.0"}

    app.include_router(user_router)
    app.include_router(project_router)
    app.include_router(invitation_router)
    return app


app = create_app()
