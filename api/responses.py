"""
Helper risposte JSON per gli endpoint.

Gli errori del processor diventano {"success": false, "error": code, "message": ...}
con lo status HTTP associato all'eccezione.
"""
import logging

from fastapi.responses import JSONResponse

from core.errors import ProcessorError

logger = logging.getLogger(__name__)

# Il primo encoding che decodifica vince; cp1252 fallisce sui byte non definiti
UPLOAD_ENCODINGS = ("utf-8-sig", "utf-8", "cp1252")


def error_response(exc: ProcessorError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def internal_error_response(exc: Exception, operation: str) -> JSONResponse:
    logger.error(f"[API] Unexpected error during {operation}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_error",
            "message": f"Internal server error: {str(exc)}",
        },
    )


def decode_upload(file_content: bytes) -> str:
    """Decodifica file carta vini provando encoding comuni (latin-1 come ultima scelta)."""
    for encoding in UPLOAD_ENCODINGS:
        try:
            text = file_content.decode(encoding)
            logger.debug(f"[API] Upload decoded with {encoding}")
            return text
        except UnicodeDecodeError:
            continue
    # latin-1 decodifica qualsiasi sequenza di byte
    logger.debug("[API] Upload decoded with latin-1")
    return file_content.decode("latin-1")
