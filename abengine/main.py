"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from abengine.api import ab_testing, auth
from abengine.config import get_settings
from abengine.services.cache import build_cache
from abengine.services.errors import ABTestError, InvalidStateError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables if they do not exist yet
    from abengine.database import Base, engine
    import abengine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    await app.state.cache.clear()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="A/B testing and statistical significance engine for page elements",
    lifespan=lifespan,
)
app.state.cache = build_cache(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ABTestError)
async def ab_test_error_handler(request: Request, exc: ABTestError):
    if isinstance(exc, InvalidStateError):
        logger.error(f"Internal inconsistency on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Register routers
app.include_router(auth.router, prefix="/api/v1")
app.include_router(ab_testing.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
