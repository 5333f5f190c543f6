# services/fortune/main.py
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from services.fortune import config
from services.fortune.ai_cache import CacheSweeper
from services.fortune.ai_fortune import ai_fortune_service
from services.fortune.fortune_routes import router as fortune_router

from shared.middleware import add_middleware_to_app

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = CacheSweeper(ai_fortune_service.cache, config.AI_CACHE_SWEEP_SECONDS)
    sweeper.start()

    if not ai_fortune_service.llm.has_key:
        logger.warning("⚠️ OPENAI_API_KEY is not set, AI fortunes will use fallback text")

    logger.info("Fortune service started successfully")
    yield

    logger.info("Shutting down fortune service...")
    await sweeper.stop()


# Create FastAPI app
app = FastAPI(
    title="Fortune Cookie Service",
    description="Daily classic fortunes and AI-written relationship fortunes",
    version="1.0.0",
    lifespan=lifespan,
)

# Centralized middleware first (executed last)
add_middleware_to_app(
    app=app,
    service_name="fortune",
    max_request_size=16 * 1024,
    log_requests=True,
)

# CORS middleware (executed first)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(fortune_router, tags=["fortune"])


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "fortune"}


# Static files last so they never shadow the API routes
if config.STATIC_DIR.is_dir():
    app.mount("/", StaticFiles(directory=str(config.STATIC_DIR), html=True), name="static")
else:
    logger.warning(f"Static directory missing at {config.STATIC_DIR}, serving API only")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.fortune.main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=config.ENVIRONMENT == "development",
        log_level="info",
    )
