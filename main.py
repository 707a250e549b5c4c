import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from r2s_auth.api.endpoints import auth, health
from r2s_auth.core.cache import CacheManager
from r2s_auth.core.config import Settings, get_settings
from r2s_auth.core.errors import AuthError
from r2s_auth.db.session import init_db, make_engine, make_session_factory
from r2s_auth.services.auth_service import AuthService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    auth_service: Optional[AuthService] = None,
) -> FastAPI:
    """
    Build the auth API.

    Pass ``auth_service`` to run against already constructed handles (tests);
    otherwise the database engine and cache are created from ``settings`` on
    startup and released on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if auth_service is not None:
            app.state.auth_service = auth_service
            yield
            return

        engine = make_engine(settings)
        init_db(engine)
        cache = CacheManager(settings)
        service = AuthService.from_settings(settings, make_session_factory(engine), cache)
        app.state.auth_service = service
        logger.info("auth service started")
        try:
            yield
        finally:
            service.close()
            cache.close()
            engine.dispose()

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(health.router)
    app.include_router(auth.router, prefix="/auth")
    return app


if __name__ == "__main__":
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
    )
