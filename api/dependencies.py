"""
Dipendenze FastAPI condivise dai router.
"""
import logging

from fastapi import Request

from core.errors import ServiceUnavailable
from ingest.service import IngestionService

logger = logging.getLogger(__name__)


def get_ingestion_service(request: Request) -> IngestionService:
    """IngestionService costruito nel lifespan e salvato in app.state."""
    service = getattr(request.app.state, "ingestion_service", None)
    if service is None:
        raise ServiceUnavailable("Ingestion service not initialized")
    return service
