"""
Main FastAPI application per winelist-processor.

Il lifespan costruisce una sola volta store, estrattore, registro progress e
IngestionService, e li condivide con i router tramite app.state.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.responses import error_response
from api.routers import wine_lists, wines
from core.config import get_config
from core.database import create_tables, dispose_engine, get_engine, get_session_factory
from core.errors import PersistenceFailure, ProcessorError
from core.logger import setup_colored_logging
from core.progress import ProgressTracker
from ingest.extractor import WineExtractor
from ingest.service import IngestionService
from ingest.store import WineStore

# Configurazione logging colorato
setup_colored_logging("processor")
logger = logging.getLogger(__name__)


def build_ingestion_service() -> IngestionService:
    """Costruisce IngestionService dalla configurazione globale."""
    config = get_config()
    store = WineStore(get_session_factory())
    extractor = WineExtractor(config)
    tracker = ProgressTracker(
        ttl_seconds=config.progress_ttl_seconds,
        max_entries=config.progress_max_entries,
    )
    return IngestionService(extractor=extractor, store=store, tracker=tracker, config=config)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Crea tabelle e servizio all'avvio; annulla le run attive e chiude l'engine allo shutdown."""
    config = get_config()
    try:
        await create_tables(get_engine())
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating database tables (continuing anyway): {e}", exc_info=True)

    if config.extraction_configured:
        logger.info("OpenAI API key configured - wine extraction enabled")
    elif config.heuristic_fallback_enabled:
        logger.warning("OpenAI API key not found - heuristic extraction only")
    else:
        logger.warning("OpenAI API key not found - ingestion endpoints will answer 503")

    application.state.ingestion_service = build_ingestion_service()
    logger.info(f"{config.processor_name} {config.processor_version} started")
    try:
        yield
    finally:
        await application.state.ingestion_service.shutdown()
        await dispose_engine()
        logger.info("Processor shut down")


app = FastAPI(title="Winelist Processor", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(wine_lists.router)
app.include_router(wines.router)


@app.exception_handler(ProcessorError)
async def processor_error_handler(request: Request, exc: ProcessorError):
    """Errori sollevati fuori dagli endpoint (es. dipendenze)."""
    return error_response(exc)


@app.get("/health")
async def health_check(request: Request):
    """Health check: database, estrazione, vini salvati, elaborazioni attive."""
    service = getattr(request.app.state, "ingestion_service", None)
    if service is None:
        return {
            "status": "starting",
            "service": "winelist-processor",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    db_status = await service.store.ping()
    wine_count = None
    if db_status == "connected":
        try:
            wine_count = await service.store.count()
        except PersistenceFailure as e:
            db_status = f"error: {e.message}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": "winelist-processor",
        "version": service.config.processor_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": db_status,
        "extraction": "configured" if service.config.extraction_configured else "not_configured",
        "heuristic_fallback": service.config.heuristic_fallback_enabled,
        "wine_count": wine_count,
        "active_runs": service.active_runs(),
        "endpoints": {
            "start": "/wine-lists",
            "progress": "/wine-lists/{handle}/progress",
            "result": "/wine-lists/{handle}/result",
            "cancel": "/wine-lists/{handle}/cancel",
            "wines": "/wines",
            "analyze": "/wines/analyze",
        },
    }
