"""
Transcript Backend - Unified Application Entry Point
Mounts the transcript service routes under a single FastAPI application
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.transcripts import app as transcripts_module
from shared.response_models import APIResponse
from shared.utils import config, setup_logging

logger = setup_logging("transcript-backend")

transcripts_app = transcripts_module.app

app = FastAPI(
    title="Transcript Backend API",
    description="""
    Transcript acquisition and normalization API.

    Service routes are organized by tag.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "Health",
            "description": "Service health and status endpoints",
        },
        {
            "name": "Transcripts",
            "description": "Transcript service - mounted at /api/v1/transcripts",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After", "X-Cache"],
)

# Routes to exclude (internal FastAPI docs routes)
EXCLUDED_PATHS = {"/openapi.json", "/docs", "/docs/oauth2-redirect", "/redoc"}

for route in transcripts_app.routes:
    if hasattr(route, "path") and hasattr(route, "endpoint"):
        if route.path in EXCLUDED_PATHS:
            continue
        route_kwargs = {
            "path": f"/api/v1/transcripts{route.path}",
            "endpoint": route.endpoint,
            "methods": route.methods,
            "tags": ["Transcripts"],
        }
        if hasattr(route, "name"):
            route_kwargs["name"] = f"transcripts_{route.name}"
        if hasattr(route, "response_model"):
            route_kwargs["response_model"] = route.response_model
        app.add_api_route(**route_kwargs)

# Share the validation handler and dependency overrides of the mounted service
app.exception_handlers.update(transcripts_app.exception_handlers)
app.dependency_overrides = transcripts_app.dependency_overrides
app.router.on_startup.extend(transcripts_app.router.on_startup)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with service information and API navigation"""
    return APIResponse(
        message="Transcript Backend API",
        data={
            "version": app.version,
            "services": {
                "transcripts": {
                    "base_url": "/api/v1/transcripts",
                    "transcript": "/api/v1/transcripts/transcript",
                    "health": "/api/v1/transcripts/health",
                    "cleanup": "/api/v1/transcripts/cleanup",
                },
            },
            "documentation": {"swagger_ui": "/docs", "redoc": "/redoc", "openapi_json": "/openapi.json"},
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for all services"""
    return {
        "status": "healthy",
        "services": {
            "api_gateway": "operational",
            "transcripts": "operational",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Transcript Backend on http://0.0.0.0:8000")
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
