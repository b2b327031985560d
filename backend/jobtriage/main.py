"""FastAPI application entrypoint."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .errors import InvalidTransition, NotFound, PersistenceFailure
from .logging_config import setup_logging
from .routers import applications, review_queue, runs

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_file)
    init_db()
    yield


app = FastAPI(
    title="Job Application Triage API",
    description="Triage job-application emails into records, a review queue, or discards",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs.router)
app.include_router(review_queue.router)
app.include_router(applications.router)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "current": exc.current, "proposed": exc.proposed},
    )


@app.exception_handler(PersistenceFailure)
async def persistence_failure_handler(request: Request, exc: PersistenceFailure):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/api/health")
def health():
    return {"status": "ok"}
