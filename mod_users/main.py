from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from mod_users.core.config import settings
from mod_users.core.errors import PersistenceError, QueryParseError, TranslationError
from mod_users.core.logger import logger, setup_logging
from mod_users.db.engine import get_engine
from mod_users.db.postgres import Catalog, PostgresClient
from mod_users.routers import expiration, tenant, user_stream
from mod_users.scheduler import ExpirationScheduler
from mod_users.services.expiration import ExpirationJob


async def query_parse_error_handler(request: Request, exc: QueryParseError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def translation_error_handler(request: Request, exc: TranslationError):
    logger.error("Query translation failed: %s", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Persistence failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def create_app(
    engine: Optional[AsyncEngine] = None,
    run_scheduler: bool = settings.EXPIRATION_ENABLED,
) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        app.state.engine = engine or get_engine()
        app.state.expiration_job = ExpirationJob(
            catalog=Catalog(app.state.engine),
            client_factory=partial(PostgresClient, app.state.engine),
        )

        scheduler = ExpirationScheduler(app.state.expiration_job)
        if run_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.shutdown()
            await app.state.engine.dispose()

    app = FastAPI(
        title="mod-users",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_exception_handler(QueryParseError, query_parse_error_handler)
    app.add_exception_handler(TranslationError, translation_error_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)

    app.include_router(user_stream.router)
    app.include_router(expiration.router)
    app.include_router(tenant.router)
    return app


app = create_app()
