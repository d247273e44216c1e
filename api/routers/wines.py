"""
Router vini salvati.

- GET /wines: Lista paginata con ricerca.
- GET /wines/{wine_id}: Singolo vino.
- POST /wines/analyze: Analisi sincrona di una riga (estrazione + salvataggio).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.dependencies import get_ingestion_service
from api.responses import error_response, internal_error_response
from core.errors import ProcessorError
from ingest.service import IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wines", tags=["wines"])


class AnalyzeRequest(BaseModel):
    text: Optional[str] = None


@router.get("")
async def list_wines(
    page: int = Query(1),
    page_size: int = Query(20, alias="pageSize"),
    search: Optional[str] = Query(None),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Lista vini ordinata per nome e annata. page/pageSize vengono corretti se fuori range."""
    try:
        wine_page = await service.list_wines(page=page, page_size=page_size, search=search)
        return {"success": True, **wine_page.to_dict()}
    except ProcessorError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "list_wines")


@router.post("/analyze")
async def analyze_wine(payload: AnalyzeRequest, service: IngestionService = Depends(get_ingestion_service)):
    try:
        analyzed = await service.analyze_one(payload.text)
        return {"success": True, "wine": analyzed.to_dict()}
    except ProcessorError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "analyze_wine")


@router.get("/{wine_id}")
async def get_wine(wine_id: int, service: IngestionService = Depends(get_ingestion_service)):
    try:
        wine = await service.get_wine(wine_id)
        return {"success": True, "wine": wine}
    except ProcessorError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "get_wine")
