import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from media_transcriber.api.routes.transcripts import router as transcripts_router
from media_transcriber.config import settings
from media_transcriber.transcription.errors import PersistenceError
from media_transcriber.transcription.storage import fail_stale_jobs, get_supabase_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Jobs left PENDING/PROCESSING by a previous process will never finish.
    if settings.supabase_url:
        try:
            cleaned = fail_stale_jobs(
                get_supabase_client(),
                processing_minutes=settings.stale_processing_minutes,
                pending_minutes=settings.stale_pending_minutes,
            )
            if cleaned:
                logger.info("Cleaned up %d stuck transcription job(s)", cleaned)
        except PersistenceError:
            logger.exception("Stale job cleanup failed")
    yield


app = FastAPI(
    title="Media Transcriber API",
    description="Size-bounded media transcription with fallback strategies",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
    ],
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(transcripts_router)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": f"Storage unavailable: {exc}"})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
