"""
Ingestion Facade - Punto di ingresso pubblico della pipeline carta vini.

startIngestion ritorna subito un handle e lascia l'elaborazione a un task asincrono
in background; le altre operazioni leggono il registro progress o lo store.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.config import ProcessorConfig, get_config
from core.errors import ConflictError, ExtractionFailure, NotFoundError, ValidationError
from core.logger import log_with_context
from core.progress import ProcessResult, ProcessStatus, ProgressState, ProgressTracker
from ingest.extractor import WineExtractor
from ingest.scheduler import BatchScheduler, count_visible_chars, split_lines
from ingest.store import WinePage, WineStore
from ingest.types import WineRecord

logger = logging.getLogger(__name__)

HANDLE_PREFIX = "wine-process-"


@dataclass
class AnalyzedWine:
    """Esito di analyze_one: record estratto e id della riga salvata."""

    id: int
    record: WineRecord

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict()
        data["id"] = self.id
        return data


def new_handle() -> str:
    return f"{HANDLE_PREFIX}{uuid.uuid4().hex}"


class IngestionService:
    """Facade costruita una volta all'avvio e condivisa dagli endpoint."""

    def __init__(
        self,
        extractor: WineExtractor,
        store: WineStore,
        tracker: Optional[ProgressTracker] = None,
        config: Optional[ProcessorConfig] = None,
        scheduler: Optional[BatchScheduler] = None,
    ):
        self.config = config or get_config()
        self.extractor = extractor
        self.store = store
        self.tracker = tracker or ProgressTracker(
            ttl_seconds=self.config.progress_ttl_seconds,
            max_entries=self.config.progress_max_entries,
        )
        self.scheduler = scheduler or BatchScheduler(extractor, store, self.tracker, config=self.config)
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start_ingestion(self, text: Optional[str]) -> str:
        """
        Avvia elaborazione carta vini in background.

        Args:
            text: Testo carta vini (una voce per riga)

        Returns:
            Handle elaborazione (ritornato subito)

        Raises:
            ValidationError: Testo assente o troppo corto
            ServiceUnavailable: Servizio di estrazione non configurato
        """
        if not text or len(text.strip()) < self.config.min_text_length:
            raise ValidationError(
                f"Testo carta vini assente o troppo corto (minimo {self.config.min_text_length} caratteri)"
            )
        self.extractor.ensure_available()

        lines = split_lines(text, self.config.min_line_chars)
        handle = new_handle()
        self.tracker.start_tracking(handle, total=len(lines))

        log_with_context(
            "info",
            f"[INGESTION] Wine list accepted: {len(lines)} usable lines, starting background processing",
            handle=handle,
        )

        task = asyncio.create_task(self.scheduler.run(handle, lines), name=handle)
        self._tasks[handle] = task
        task.add_done_callback(lambda t, h=handle: self._tasks.pop(h, None))
        return handle

    def get_progress(self, handle: str) -> ProgressState:
        state = self.tracker.get(handle)
        if state is None:
            raise NotFoundError(f"Elaborazione non trovata: {handle}")
        return state

    def get_result(self, handle: str) -> ProcessResult:
        """
        Raises:
            NotFoundError: Handle sconosciuto o elaborazione non ancora terminata
        """
        result = self.tracker.get_result(handle)
        if result is None:
            if handle in self.tracker:
                raise NotFoundError(f"Elaborazione {handle} non ancora terminata")
            raise NotFoundError(f"Elaborazione non trovata: {handle}")
        return result

    def cancel(self, handle: str) -> ProgressState:
        """
        Richiede l'annullamento; la run si ferma prima della riga successiva.

        Raises:
            NotFoundError: Handle sconosciuto
            ConflictError: Elaborazione già terminata
        """
        state = self.get_progress(handle)
        if state.is_terminal:
            raise ConflictError(f"Elaborazione {handle} già terminata ({state.status.value})")
        self.tracker.request_cancel(handle)
        log_with_context("info", "[INGESTION] Cancellation requested", handle=handle)
        return self.get_progress(handle)

    async def analyze_one(self, line: Optional[str]) -> AnalyzedWine:
        """
        Analisi sincrona di una riga: estrazione e salvataggio inline.

        Raises:
            ValidationError: Riga assente o troppo corta
            ServiceUnavailable: Servizio di estrazione non disponibile
            ExtractionFailure: Chiamata fallita o riga non riconosciuta come vino
            PersistenceFailure: Errore database
        """
        line = (line or "").strip()
        if count_visible_chars(line) < self.config.min_line_chars:
            raise ValidationError(
                f"Riga troppo corta per essere analizzata (minimo {self.config.min_line_chars} caratteri)"
            )
        self.extractor.ensure_available()

        record = await self.extractor.extract(line)
        if record is None or not record.is_wine:
            raise ExtractionFailure("Il testo non è stato riconosciuto come vino")

        wine_id = await self.store.upsert(record)
        logger.info(f"[INGESTION] Analyzed wine {wine_id}: {record.name}")
        return AnalyzedWine(id=wine_id, record=record)

    async def list_wines(self, page: int = 1, page_size: int = 20, search: Optional[str] = None) -> WinePage:
        return await self.store.list(page=page, page_size=page_size, search=search)

    async def get_wine(self, wine_id: int) -> Dict[str, Any]:
        wine = await self.store.get_by_id(wine_id)
        if wine is None:
            raise NotFoundError(f"Vino non trovato: {wine_id}")
        return wine.to_dict()

    def active_runs(self) -> int:
        return self.tracker.active_count()

    async def wait_for(self, handle: str, timeout: Optional[float] = None) -> ProcessResult:
        """Attende la fine della run (test e shutdown ordinato)."""
        task = self._tasks.get(handle)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.get_result(handle)

    async def shutdown(self) -> None:
        """Annulla le run ancora attive."""
        handles = list(self._tasks.keys())
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info(f"[INGESTION] Cancelling {len(tasks)} running ingestion(s)")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # Task annullati prima del primo passo: lo scheduler non ha chiuso la run
        for handle in handles:
            self._close_unstarted(handle)

    def _close_unstarted(self, handle: str) -> None:
        state = self.tracker.get(handle)
        if state is None or state.status != ProcessStatus.PENDING:
            return
        message = "Elaborazione annullata allo shutdown"
        self.tracker.update(handle, status=ProcessStatus.PROCESSING)
        self.tracker.update(handle, status=ProcessStatus.CANCELLED, message=message)
        if self.tracker.get_result(handle) is None:
            self.tracker.set_result(handle, ProcessResult(
                handle=handle,
                success=False,
                processed_count=0,
                error_count=0,
                total_in_database=0,
                message=message,
            ))
        log_with_context("info", f"[INGESTION] Run cancelled before start: {handle}", handle=handle)
