import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from uptimeguard.config import get_settings
from uptimeguard.database import Base, engine, get_session_factory
from uptimeguard.dependencies import build_components
from uptimeguard.errors import RepositoryUnavailable
from uptimeguard.routers import incidents, monitors, push
from uptimeguard.storage import SqlRepository

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
# httpx logs every request at INFO; probes make a lot of them
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    repository = SqlRepository(get_session_factory(), poll_interval=settings.monitor_poll_interval)
    components = build_components(repository, settings)
    app.state.components = components

    # Start the check scheduler (skip in test mode)
    testing = getattr(app.state, "_testing", False)
    if not testing:
        await components.scheduler.start()

    yield

    # Shutdown
    if not testing:
        await components.scheduler.shutdown()
    await components.dispatcher.drain(timeout=settings.drain_timeout)
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RepositoryUnavailable)
async def repository_unavailable_handler(request: Request, exc: RepositoryUnavailable):
    return JSONResponse(status_code=503, content={"detail": f"Storage unavailable: {exc}"})


# Routers
app.include_router(monitors.router)
app.include_router(incidents.router)
app.include_router(push.router)


@app.get("/api/health")
async def health_check(request: Request):
    components = getattr(request.app.state, "components", None)
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "scheduler_running": bool(components and components.scheduler.running),
    }
