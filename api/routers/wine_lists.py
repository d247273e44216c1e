"""
Router elaborazione carta vini.

- POST /wine-lists: Avvia elaborazione in background e ritorna handle immediatamente.
- GET /wine-lists/{handle}/progress: Stato live dell'elaborazione.
- GET /wine-lists/{handle}/result: Risultato finale (solo a elaborazione terminata).
- POST /wine-lists/{handle}/cancel: Richiede annullamento.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_ingestion_service
from api.responses import decode_upload, error_response, internal_error_response
from core.errors import ProcessorError, ValidationError
from ingest.service import IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wine-lists", tags=["wine-lists"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB


async def _read_wine_list_text(request: Request) -> Optional[str]:
    """Testo carta vini da body JSON {text} o da upload multipart (campo file o text)."""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data") or content_type.startswith(
        "application/x-www-form-urlencoded"
    ):
        form = await request.form()
        upload = form.get("file")
        if upload is not None and hasattr(upload, "read"):
            file_content = await upload.read()
            if len(file_content) > MAX_UPLOAD_BYTES:
                raise ValidationError("File troppo grande (max 10MB)")
            logger.info(f"[API] Wine list upload received: {upload.filename} ({len(file_content)} bytes)")
            return decode_upload(file_content)
        text = form.get("text")
        return text if isinstance(text, str) else None

    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Body JSON non valido: atteso {\"text\": ...}")
    if not isinstance(body, dict):
        raise ValidationError("Body JSON non valido: atteso {\"text\": ...}")
    text = body.get("text")
    return text if isinstance(text, str) else None


@router.post("")
async def start_wine_list(request: Request, service: IngestionService = Depends(get_ingestion_service)):
    """
    Avvia elaborazione carta vini.

    Ritorna subito {"success": true, "handle": ...}; usare /wine-lists/{handle}/progress
    per seguire l'avanzamento.
    """
    try:
        text = await _read_wine_list_text(request)
        handle = await service.start_ingestion(text)
        return {
            "success": True,
            "handle": handle,
            "message": "Elaborazione avviata. Usa /wine-lists/{handle}/progress per verificare lo stato.",
        }
    except ProcessorError as e:
        logger.warning(f"[API] Wine list rejected: {e.message}")
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "start_wine_list")


@router.get("/{handle}/progress")
async def get_progress(handle: str, service: IngestionService = Depends(get_ingestion_service)):
    try:
        state = service.get_progress(handle)
        return {"success": True, **state.to_dict()}
    except ProcessorError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "get_progress")


@router.get("/{handle}/result")
async def get_result(handle: str, service: IngestionService = Depends(get_ingestion_service)):
    try:
        result = service.get_result(handle)
        return result.to_dict()
    except ProcessorError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "get_result")


@router.post("/{handle}/cancel")
async def cancel(handle: str, service: IngestionService = Depends(get_ingestion_service)):
    try:
        state = service.cancel(handle)
        return {
            "success": True,
            "handle": handle,
            "status": state.status.value,
            "message": "Annullamento richiesto: l'elaborazione si fermerà prima della riga successiva",
        }
    except ProcessorError as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response(e, "cancel")
