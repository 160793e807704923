# erp_engine/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from erp_engine.api.exception_handlers import register_exception_handlers
from erp_engine.api.router import api_router
from erp_engine.core.config import settings
from erp_engine.core.logging_setup import setup_logging
from erp_engine.db.session import Database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    # tests may install their own Database before startup
    owned = getattr(app.state, "db", None) is None
    if owned:
        app.state.db = Database.from_settings(settings).open()
    logger.info("%s started", settings.PROJECT_NAME)
    try:
        yield
    finally:
        if owned:
            app.state.db.close()
            app.state.db = None


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    # Health
    @app.get("/")
    def root():
        return {"message": f"{settings.PROJECT_NAME} running", "version": "v1"}

    return app


app = create_app()
