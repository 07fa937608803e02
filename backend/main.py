import logging
from contextlib import asynccontextmanager

from api.routes import generate
from config import AppMode, get_settings
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from services.tracing import TracingHandle

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("google_genai").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown: one tracer per process."""
    logger.info(f"Starting PoseShift AI in {settings.APP_MODE.value} mode...")
    logger.info(
        "Datadog: service=%s env=%s site=%s api_key_present=%s",
        settings.DD_SERVICE,
        settings.DD_ENV,
        settings.DD_SITE,
        "YES" if settings.DD_API_KEY else "NO",
    )

    app.state.tracing = TracingHandle.init(settings)

    if not settings.GEMINI_API_KEY:
        logger.warning("No GEMINI_API_KEY configured. Generation requests will fail with 503")

    yield

    app.state.tracing.shutdown()
    logger.info("Shutting down PoseShift AI...")


app = FastAPI(
    title="PoseShift AI",
    description="Pose transfer with Gemini, instrumented for Datadog",
    version=settings.DD_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
)

# Request logging (development only)
if settings.APP_MODE == AppMode.DEV:
    from middleware.logging import RequestLoggingMiddleware, configure_request_logging

    configure_request_logging(settings.LOG_LEVEL)
    app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - must be last (first to process incoming requests)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
)

api_router = APIRouter(prefix="/api")
api_router.include_router(generate.router)
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": settings.DD_SERVICE}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT)
