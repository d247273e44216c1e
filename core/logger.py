"""
Logging strutturato per winelist-processor.

Unifica logging colorato e structured logging con supporto JSON.
"""
import logging
import json
import uuid
import sys
import contextvars
from typing import Optional, Dict, Any
from datetime import datetime, timezone

import colorlog

# Context variables per tracciare richieste ed elaborazioni in background
_request_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('request_context', default={})


def setup_colored_logging(service_name: str = "processor", level: int = logging.INFO):
    """
    Configura logging colorato con colorlog.

    Args:
        service_name: Nome del servizio per identificare log
        level: Livello root logger
    """
    # Handler per stdout con colori
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG)

    formatter = colorlog.ColoredFormatter(
        f'%(log_color)s[%(levelname)s]%(reset)s %(cyan)s{service_name}%(reset)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        reset=True,
        log_colors={
            'DEBUG': 'white',
            'INFO': 'blue',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        },
        secondary_log_colors={},
        style='%'
    )

    handler.setFormatter(formatter)

    # Configura root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Rimuovi handler esistenti
    root_logger.handlers = []
    root_logger.addHandler(handler)

    # Riduci verbosità librerie HTTP
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('openai').setLevel(logging.WARNING)

    return root_logger


def set_request_context(handle: Optional[str] = None, correlation_id: Optional[str] = None):
    """
    Imposta contesto per logging strutturato.

    Args:
        handle: Handle elaborazione carta vini
        correlation_id: ID correlazione (genera se None)
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context = {}
    if handle is not None:
        context["handle"] = handle
    context["correlation_id"] = correlation_id

    _request_context.set(context)


def get_request_context() -> Dict[str, Any]:
    """Recupera contesto corrente (handle, correlation_id)."""
    return _request_context.get({})


def log_with_context(
    level: str,
    message: str,
    handle: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra
):
    """
    Log con contesto strutturato (handle, correlation_id).

    Args:
        level: 'info', 'warning', 'error', 'debug'
        message: Messaggio da loggare
        handle: Handle elaborazione (usa contesto se None)
        correlation_id: ID correlazione (usa contesto se None)
        **extra: Argomenti aggiuntivi per logger (es. exc_info)
    """
    ctx = get_request_context()
    if handle is None:
        handle = ctx.get("handle")
    if correlation_id is None:
        correlation_id = ctx.get("correlation_id")

    log_message = message
    if handle:
        log_message = f"[handle={handle}] {log_message}"
    if correlation_id:
        log_message = f"[correlation_id={correlation_id}] {log_message}"

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)
    log_func(log_message, **extra)


def log_json(
    level: str,
    message: str,
    handle: Optional[str] = None,
    correlation_id: Optional[str] = None,
    stage: Optional[str] = None,
    total: Optional[int] = None,
    processed: Optional[int] = None,
    errors: Optional[int] = None,
    elapsed_sec: Optional[float] = None,
    **extra
):
    """
    Log strutturato in formato JSON (una riga).

    Args:
        level: 'info', 'warning', 'error', 'debug'
        message: Messaggio da loggare
        handle: Handle elaborazione
        correlation_id: ID correlazione
        stage: Fase elaborazione (start, complete, error, cancelled)
        total: Righe totali
        processed: Vini salvati
        errors: Righe in errore
        elapsed_sec: Tempo elaborazione in secondi
        **extra: Campi aggiuntivi
    """
    ctx = get_request_context()
    if handle is None:
        handle = ctx.get("handle")
    if correlation_id is None:
        correlation_id = ctx.get("correlation_id")

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level.upper(),
        "message": message,
    }

    if correlation_id:
        log_data["correlation_id"] = correlation_id
    if handle:
        log_data["handle"] = handle
    if stage:
        log_data["stage"] = stage

    # Metriche
    if total is not None:
        log_data["total"] = total
    if processed is not None:
        log_data["processed"] = processed
    if errors is not None:
        log_data["errors"] = errors
    if elapsed_sec is not None:
        log_data["elapsed_sec"] = elapsed_sec

    log_data.update(extra)

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)
    log_func(json.dumps(log_data, ensure_ascii=False, default=str))
