"""Transcript service API endpoints."""

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from database import SessionLocal, init_database
from services.transcripts.drivers import GladiaTranscriptionProvider, SupadataCaptionProvider
from services.transcripts.ledger import TranscriptLedger
from services.transcripts.negative_cache import NegativeCache
from services.transcripts.rate_limiter import client_identity, create_rate_limiter
from services.transcripts.service import TranscriptError, TranscriptService
from shared.enums import ErrorCode
from shared.models import TranscriptRequest, TranscriptResponse
from shared.response_models import APIResponse, HealthResponse
from shared.utils import config, setup_logging

logger = setup_logging("transcript-service")

app = FastAPI(
    title="Transcript Service",
    description="Transcript acquisition with native captions, AI transcription and resumable jobs",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After", "X-Cache"],
)


def build_service(session_factory=SessionLocal) -> TranscriptService:
    """Wire the service from configuration; providers without credentials are left out."""
    captions = SupadataCaptionProvider() if config.get("supadata_api_key") else None
    transcriber = GladiaTranscriptionProvider() if config.get("gladia_api_key") else None
    if captions is None:
        logger.warning("SUPADATA_API_KEY not set, native captions disabled")
    if transcriber is None:
        logger.warning("GLADIA_API_KEY not set, AI transcription disabled")
    return TranscriptService(
        ledger=TranscriptLedger(session_factory),
        negative_cache=NegativeCache(session_factory),
        rate_limiter=create_rate_limiter(),
        captions=captions,
        transcriber=transcriber,
    )


transcript_service = build_service()


def get_transcript_service() -> TranscriptService:
    return transcript_service


@app.on_event("startup")
async def create_tables() -> None:
    init_database()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = TranscriptResponse(success=False, error_code=ErrorCode.REQUEST_ERROR, warning="Malformed request")
    return JSONResponse(status_code=400, content=body.to_payload())


@app.get("/health", response_model=HealthResponse)
async def health_check(service: TranscriptService = Depends(get_transcript_service)):
    """Health check endpoint for the transcript service."""
    return HealthResponse(
        status="healthy",
        message="Transcript Service is healthy",
        version=app.version,
        dependencies={
            "captions": service.captions.name if service.captions else "disabled",
            "ai": service.transcriber.name if service.transcriber else "disabled",
        },
    )


@app.post("/cleanup", response_model=APIResponse)
async def run_cleanup(service: TranscriptService = Depends(get_transcript_service)):
    """Remove stale pending jobs and expired negative-cache entries; called by a scheduler."""
    try:
        removed = service.cleanup()
    except SQLAlchemyError as e:
        logger.error(f"Cleanup failed: {e}")
        body = APIResponse(success=False, message="Cleanup failed")
        return JSONResponse(status_code=500, content=body.model_dump())
    return APIResponse(message="Cleanup performed successfully", data=removed)


@app.post("/transcript")
async def get_transcript(
    body: TranscriptRequest,
    request: Request,
    service: TranscriptService = Depends(get_transcript_service),
) -> JSONResponse:
    """Resolve a transcript for a video and language.

    Returns stored or native captions immediately. With ``preferAI`` an AI job
    is dispatched (or an in-flight one resumed) and ``status: processing`` plus
    a ``resultHandle`` come back; the caller re-posts with that handle until
    segments arrive.
    """
    identity = client_identity(request.headers, request.client.host if request.client else None)
    try:
        reply = await service.handle(body, identity)
        return JSONResponse(
            status_code=reply.status_code, content=reply.response.to_payload(), headers=reply.headers
        )
    except TranscriptError as e:
        if e.status_code >= 500:
            logger.error(f"Transcript request failed for {body.video_id}:{body.lang}: {e.message}")
        return JSONResponse(
            status_code=e.status_code, content=e.to_response(body.lang).to_payload(), headers=e.headers
        )
    except Exception as e:
        logger.error(f"Unexpected error resolving {body.video_id}:{body.lang}: {e}")
        error = TranscriptError(ErrorCode.SERVER_ERROR, "Internal server error", status_code=500)
        return JSONResponse(status_code=500, content=error.to_response(body.lang).to_payload())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
