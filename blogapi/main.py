from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import close_client, ensure_indexes, get_db, ping
from .errors import register_exception_handlers
from .logger import bind_request_logging, setup_logging
from .routers import auth, users
from .settings import Settings, get_settings


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, debug=settings.is_local)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    bind_request_logging(app)
    register_exception_handlers(app)

    app.include_router(auth.router, prefix=settings.api_prefix)
    app.include_router(users.router, prefix=settings.api_prefix)

    @app.on_event("startup")
    async def on_startup():
        if not await ping():
            raise RuntimeError("MongoDB unreachable")
        await ensure_indexes(get_db())

    @app.on_event("shutdown")
    async def on_shutdown():
        await close_client()

    @app.get("/")
    def root():
        return {"status": "ok", "app": settings.app_name, "env": settings.env}

    return app
