import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .errors import InvalidSortSettings, VoiceProcessingError
from .logging_config import configure_logging
from .routers import settings as settings_router
from .routers import tags as tags_router
from .routers import todos as todos_router
from .routers import voice as voice_router
from .settings import get_settings

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "CRUD, archiving and relevance-ranked listing of Todo items.",
    },
    {"name": "tags", "description": "Per-user tags that can be attached to todos."},
    {"name": "settings", "description": "Ranking weights used to order the todo list."},
    {"name": "voice", "description": "Turn an audio recording into proposed todos."},
]

_settings = get_settings()
configure_logging(_settings.log_level)

app = FastAPI(
    title="Todo Backend",
    description="Personal todo service with relevance ranking, tags, archiving and voice capture.",
    version="0.2.0",
    openapi_tags=openapi_tags,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handlers for consistent JSON on validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_errors(exc.errors()),
        },
    )


@app.exception_handler(InvalidSortSettings)
async def invalid_settings_handler(request: Request, exc: InvalidSortSettings) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": exc.message, "detail": jsonable_errors(exc.errors)},
    )


@app.exception_handler(VoiceProcessingError)
async def voice_error_handler(request: Request, exc: VoiceProcessingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[voice] {type(exc).__name__}: {exc.message}")
    else:
        logger.info(f"[voice] rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


def jsonable_errors(errors):
    """Keep the JSON-safe part (loc, msg, type) of pydantic error dicts."""
    return [{k: err[k] for k in ("loc", "msg", "type") if k in err} for err in errors]


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {"message": "Healthy", "backend": _settings.persistence_backend}


# Include routers
app.include_router(todos_router.router)
app.include_router(tags_router.router)
app.include_router(settings_router.router)
app.include_router(voice_router.router)


# PUBLIC_INTERFACE
def run() -> None:
    """Serve the app with uvicorn on HOST:PORT."""
    logger.info(f"[server] starting on http://{_settings.host}:{_settings.port}")
    uvicorn.run(app, host=_settings.host, port=_settings.port, log_level=_settings.log_level.lower())


if __name__ == "__main__":
    run()
