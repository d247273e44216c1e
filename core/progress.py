"""
Registro progress per elaborazioni carta vini.

Mantiene in memoria lo stato live (ProgressState) e il risultato finale (ProcessResult)
di ogni elaborazione, indicizzati per handle. Il registro è un oggetto costruito una
volta all'avvio e passato al servizio di ingestion. Ogni elaborazione è scritta solo
dal task asincrono che la possiede.
"""
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class ProcessStatus(str, Enum):
    """Stato di un'elaborazione."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {ProcessStatus.COMPLETE, ProcessStatus.ERROR, ProcessStatus.CANCELLED}

_ALLOWED_TRANSITIONS = {
    ProcessStatus.PENDING: {ProcessStatus.PROCESSING},
    ProcessStatus.PROCESSING: {ProcessStatus.COMPLETE, ProcessStatus.ERROR, ProcessStatus.CANCELLED},
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProgressState:
    """Contatori live di un'elaborazione."""

    handle: str
    total: int = 0
    processed: int = 0
    errors: int = 0
    handled: int = 0
    percent: int = 0
    current_batch: int = 0
    total_batches: int = 0
    status: ProcessStatus = ProcessStatus.PENDING
    message: str = ""
    start_time: datetime = field(default_factory=_utcnow)
    last_update_time: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "handle": self.handle,
            "total": self.total,
            "processed": self.processed,
            "errors": self.errors,
            "handled": self.handled,
            "percent": self.percent,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "status": self.status.value,
            "message": self.message,
            "start_time": self.start_time.isoformat(),
            "last_update_time": self.last_update_time.isoformat(),
        }


@dataclass
class ProcessResult:
    """Riepilogo finale di un'elaborazione (scritto una sola volta)."""

    handle: str
    success: bool
    processed_count: int
    error_count: int
    total_in_database: int
    message: str
    sample_wines: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "handle": self.handle,
            "success": self.success,
            "processed_count": self.processed_count,
            "error_count": self.error_count,
            "total_in_database": self.total_in_database,
            "sample_wines": list(self.sample_wines),
            "message": self.message,
        }


class ProgressTracker:
    """
    Registro handle -> ProgressState e handle -> ProcessResult.

    Le entry terminali vengono rimosse dopo ``ttl_seconds``; se il registro supera
    ``max_entries`` vengono rimosse per prime le entry terminali più vecchie.
    """

    def __init__(self, ttl_seconds: float = 3600.0, max_entries: int = 1000, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._progress: "OrderedDict[str, ProgressState]" = OrderedDict()
        self._results: Dict[str, ProcessResult] = {}
        self._finished_at: Dict[str, float] = {}
        self._cancel_requested: Set[str] = set()

    def start_tracking(self, handle: str, total: int = 0, message: str = "") -> ProgressState:
        """
        Registra una nuova elaborazione in stato pending.

        Raises:
            ValueError: Se l'handle è già registrato
        """
        self.evict_expired()
        if handle in self._progress:
            raise ValueError(f"Handle già registrato: {handle}")

        state = ProgressState(
            handle=handle,
            total=total,
            message=message or "Inizializzazione elaborazione carta vini...",
        )
        self._progress[handle] = state
        self._enforce_capacity()
        logger.debug(f"[PROGRESS] Tracking started for {handle} (total={total})")
        return replace(state)

    def update(self, handle: str, **changes: Any) -> Optional[ProgressState]:
        """
        Applica un aggiornamento parziale e rinfresca last_update_time.

        Il campo ``percent`` non può diminuire; le transizioni di stato ammesse sono
        pending -> processing -> (complete | error | cancelled). Uno stato terminale
        non viene più modificato.

        Returns:
            Snapshot aggiornato, None se l'handle è sconosciuto

        Raises:
            ValueError: Se la transizione di stato non è valida o il campo non esiste
        """
        state = self._progress.get(handle)
        if state is None:
            logger.warning(f"[PROGRESS] Update for unknown handle {handle}")
            return None

        if state.is_terminal:
            logger.warning(f"[PROGRESS] Ignoring update for terminal handle {handle} ({state.status.value})")
            return replace(state)

        new_status = changes.pop("status", None)
        if new_status is not None:
            new_status = ProcessStatus(new_status)
            if new_status != state.status:
                allowed = _ALLOWED_TRANSITIONS.get(state.status, set())
                if new_status not in allowed:
                    raise ValueError(
                        f"Transizione non valida per {handle}: {state.status.value} -> {new_status.value}"
                    )
                state.status = new_status

        for key, value in changes.items():
            if key in ("handle", "start_time", "last_update_time") or not hasattr(state, key):
                raise ValueError(f"Campo progress non aggiornabile: {key}")
            if key == "percent":
                value = max(state.percent, min(100, int(value)))
            setattr(state, key, value)

        state.last_update_time = _utcnow()

        if state.is_terminal:
            self._finished_at[handle] = self._clock()
            self._cancel_requested.discard(handle)

        return replace(state)

    def get(self, handle: str) -> Optional[ProgressState]:
        """Snapshot dello stato corrente, None se sconosciuto."""
        self.evict_expired()
        state = self._progress.get(handle)
        return replace(state) if state is not None else None

    def set_result(self, handle: str, result: ProcessResult) -> None:
        """
        Salva il risultato finale.

        Raises:
            ValueError: Se un risultato è già presente per l'handle
        """
        if handle in self._results:
            raise ValueError(f"Risultato già presente per {handle}")
        self._results[handle] = result
        if handle not in self._finished_at:
            self._finished_at[handle] = self._clock()

    def get_result(self, handle: str) -> Optional[ProcessResult]:
        self.evict_expired()
        return self._results.get(handle)

    def request_cancel(self, handle: str) -> bool:
        """Segnala richiesta di annullamento. False se handle sconosciuto o terminale."""
        state = self._progress.get(handle)
        if state is None or state.is_terminal:
            return False
        self._cancel_requested.add(handle)
        return True

    def is_cancel_requested(self, handle: str) -> bool:
        return handle in self._cancel_requested

    def active_count(self) -> int:
        """Numero elaborazioni non terminali."""
        return sum(1 for state in self._progress.values() if not state.is_terminal)

    def __contains__(self, handle: str) -> bool:
        return handle in self._progress

    def __len__(self) -> int:
        return len(self._progress)

    def evict_expired(self) -> int:
        """Rimuove entry terminali oltre TTL. Ritorna numero entry rimosse."""
        if not self.ttl_seconds:
            return 0
        now = self._clock()
        expired = [
            handle for handle, finished in self._finished_at.items()
            if now - finished >= self.ttl_seconds
        ]
        for handle in expired:
            self._drop(handle)
        if expired:
            logger.info(f"[PROGRESS] Evicted {len(expired)} expired entries")
        return len(expired)

    def _enforce_capacity(self) -> None:
        overflow = len(self._progress) - self.max_entries
        if overflow <= 0:
            return
        # Le entry attive non vengono mai rimosse
        terminal = sorted(
            (handle for handle in self._progress if handle in self._finished_at),
            key=lambda h: self._finished_at[h],
        )
        for handle in terminal[:overflow]:
            self._drop(handle)
        if len(self._progress) > self.max_entries:
            logger.warning(
                f"[PROGRESS] Registry above capacity with active runs only "
                f"({len(self._progress)}/{self.max_entries})"
            )

    def _drop(self, handle: str) -> None:
        self._progress.pop(handle, None)
        self._results.pop(handle, None)
        self._finished_at.pop(handle, None)
        self._cancel_requested.discard(handle)
