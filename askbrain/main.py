"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from askbrain.api import router as api_router
from askbrain.core.config import get_settings
from askbrain.core.logging import get_logger
from askbrain.core.training_collector import TrainingCollector

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    collector = TrainingCollector(settings.TRAINING_QUEUE_SIZE)
    collector.start()
    app.state.training_collector = collector
    logger.info(f"Ask-Brain RAG engine started (env={settings.RAG_ENV})")

    yield

    await collector.stop()
    logger.info("Ask-Brain RAG engine stopped")


app = FastAPI(
    title="Ask-Brain RAG Engine",
    description="Retrieval-augmented conversational answers over LexyHub marketplace data",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
