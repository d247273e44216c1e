"""
Batch Scheduler - Elaborazione sequenziale a batch di una carta vini.

Divide il testo in righe, sceglie dimensione batch e ritardi in base al numero di
righe ed elabora una riga alla volta (Extractor -> Store), aggiornando il registro
progress. Gli errori della singola riga vengono contati e l'elaborazione continua;
servizio non disponibile o database irraggiungibile interrompono la run.
"""
import asyncio
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional

from core.config import ProcessorConfig, get_config
from core.errors import ExtractionFailure, PersistenceFailure
from core.logger import log_json, log_with_context, set_request_context
from core.progress import ProcessResult, ProcessStatus, ProgressTracker
from ingest.extractor import WineExtractor
from ingest.store import WineStore

logger = logging.getLogger(__name__)

# (soglia righe esclusiva, valore): liste più lunghe -> batch più piccoli e ritardi più lunghi
BATCH_SIZE_TIERS = ((1000, 25), (500, 50), (100, 100))
DEFAULT_BATCH_SIZE = 200

ITEM_DELAY_TIERS = ((1000, 0.25), (500, 0.15), (100, 0.10))
DEFAULT_ITEM_DELAY = 0.05


def count_visible_chars(line: str) -> int:
    return sum(1 for ch in line if not ch.isspace())


def split_lines(text: str, min_chars: int = 4) -> List[str]:
    """
    Divide il testo in righe pulite.

    Args:
        text: Testo carta vini
        min_chars: Caratteri non-spazio minimi perché una riga sia plausibilmente un vino

    Returns:
        Righe (strip) in ordine di input
    """
    lines = []
    for raw in (text or "").splitlines():
        line = raw.strip()
        if count_visible_chars(line) >= min_chars:
            lines.append(line)
    return lines


def _tier_value(total: int, tiers, default):
    for threshold, value in tiers:
        if total > threshold:
            return value
    return default


def choose_batch_size(total_lines: int) -> int:
    return _tier_value(total_lines, BATCH_SIZE_TIERS, DEFAULT_BATCH_SIZE)


def choose_item_delay(total_lines: int) -> float:
    """Ritardo (secondi) tra due righe consecutive dello stesso batch."""
    return _tier_value(total_lines, ITEM_DELAY_TIERS, DEFAULT_ITEM_DELAY)


def compute_percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, int(round(done / total * 100)))


class BatchScheduler:
    """Esegue una run di ingestion su un singolo task asincrono."""

    def __init__(
        self,
        extractor: WineExtractor,
        store: WineStore,
        tracker: ProgressTracker,
        config: Optional[ProcessorConfig] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.extractor = extractor
        self.store = store
        self.tracker = tracker
        self.config = config or get_config()
        self._sleep = sleep
        self._clock = clock

    async def run(self, handle: str, lines: List[str]) -> ProcessResult:
        """
        Elabora le righe e registra il ProcessResult finale.

        Args:
            handle: Handle già registrato nel tracker (stato pending)
            lines: Righe già filtrate da split_lines

        Returns:
            ProcessResult (anche in caso di errore o annullamento)
        """
        set_request_context(handle=handle)
        started = self._clock()
        total = len(lines)
        batch_size = choose_batch_size(total)
        item_delay = choose_item_delay(total) * self.config.item_delay_multiplier
        total_batches = math.ceil(total / batch_size) if total else 0

        processed = 0
        errors = 0
        handled = 0
        samples: List[Dict[str, Any]] = []

        self.tracker.update(
            handle,
            status=ProcessStatus.PROCESSING,
            total=total,
            total_batches=total_batches,
            current_batch=1 if total else 0,
            message="Avvio elaborazione carta vini...",
        )
        log_json(
            "info", "Wine list processing started", stage="start",
            total=total, batch_size=batch_size, total_batches=total_batches, item_delay=item_delay,
        )

        try:
            for batch_index, batch_start in enumerate(range(0, total, batch_size), start=1):
                batch = lines[batch_start:batch_start + batch_size]
                log_with_context(
                    "info",
                    f"[SCHEDULER] Batch {batch_index}/{total_batches} "
                    f"(lines {batch_start + 1}-{batch_start + len(batch)} of {total})",
                )
                self.tracker.update(
                    handle,
                    current_batch=batch_index,
                    percent=compute_percent(handled, total),
                    message=f"Elaborazione batch {batch_index} di {total_batches}...",
                )

                for offset, line in enumerate(batch):
                    if self.tracker.is_cancel_requested(handle):
                        return await self._finish(
                            handle, ProcessStatus.CANCELLED, processed, errors, handled, samples, started,
                            f"Elaborazione annullata: {processed} vini salvati, {errors} errori",
                        )

                    if self.config.max_run_seconds and self._clock() - started > self.config.max_run_seconds:
                        return await self._finish(
                            handle, ProcessStatus.ERROR, processed, errors, handled, samples, started,
                            f"Tempo massimo superato ({self.config.max_run_seconds:.0f}s): "
                            f"{processed} vini salvati, {errors} errori",
                        )

                    try:
                        record = await self.extractor.extract(line)
                        if record is not None and record.is_wine:
                            await self.store.upsert(record)
                            processed += 1
                            if len(samples) < self.config.sample_size:
                                samples.append(record.to_dict())
                    except ExtractionFailure as e:
                        errors += 1
                        log_with_context("warning", f"[SCHEDULER] Extraction failed for '{line[:30]}...': {e}")
                        self.tracker.update(
                            handle,
                            errors=errors,
                            message=f"Elaborazione vini: {processed} di {total} ({errors} errori)",
                        )
                    except PersistenceFailure as e:
                        if e.unreachable:
                            raise
                        errors += 1
                        log_with_context("warning", f"[SCHEDULER] Store failed for '{line[:30]}...': {e}")
                        self.tracker.update(
                            handle,
                            errors=errors,
                            message=f"Elaborazione vini: {processed} di {total} ({errors} errori)",
                        )

                    handled += 1
                    if handled % self.config.progress_update_every == 0 or handled == total:
                        percent = compute_percent(handled, total)
                        self.tracker.update(
                            handle,
                            processed=processed,
                            errors=errors,
                            handled=handled,
                            percent=percent,
                            message=f"Elaborazione vini: {processed} di {total} ({percent}%)",
                        )

                    if offset < len(batch) - 1 and item_delay > 0:
                        await self._sleep(item_delay)

                if batch_start + batch_size < total:
                    log_with_context("info", f"[SCHEDULER] Batch {batch_index} complete, pausing before next batch")
                    self.tracker.update(
                        handle,
                        processed=processed,
                        errors=errors,
                        handled=handled,
                        percent=compute_percent(handled, total),
                        message=f"Batch {batch_index} completato. Preparazione batch successivo...",
                    )
                    if self.config.batch_pause_seconds > 0:
                        await self._sleep(self.config.batch_pause_seconds)

            return await self._finish(
                handle, ProcessStatus.COMPLETE, processed, errors, handled, samples, started,
                f"Elaborazione completata: {processed} vini salvati, {errors} errori",
            )

        except asyncio.CancelledError:
            # Shutdown del processo: chiudi la run come annullata e propaga
            await self._finish(
                handle, ProcessStatus.CANCELLED, processed, errors, handled, samples, started,
                "Elaborazione interrotta (shutdown)", count_rows=False,
            )
            raise
        except Exception as e:
            log_with_context("error", f"[SCHEDULER] Wine list processing failed: {e}", exc_info=True)
            return await self._finish(
                handle, ProcessStatus.ERROR, processed, errors, handled, samples, started,
                f"Errore elaborazione carta vini: {e}",
            )

    async def _finish(
        self,
        handle: str,
        status: ProcessStatus,
        processed: int,
        errors: int,
        handled: int,
        samples: List[Dict[str, Any]],
        started: float,
        message: str,
        count_rows: bool = True,
    ) -> ProcessResult:
        """Porta la run in stato terminale e registra il ProcessResult."""
        success = status == ProcessStatus.COMPLETE
        total_in_database = await self._count_rows(status) if count_rows else 0
        if success:
            message = f"{message}. Totale vini in database: {total_in_database}"

        changes: Dict[str, Any] = {
            "status": status,
            "processed": processed,
            "errors": errors,
            "handled": handled,
            "message": message,
        }
        if success:
            changes["percent"] = 100
        self.tracker.update(handle, **changes)

        result = ProcessResult(
            handle=handle,
            success=success,
            processed_count=processed,
            error_count=errors,
            total_in_database=total_in_database,
            sample_wines=samples,
            message=message,
        )
        self.tracker.set_result(handle, result)

        log_json(
            "info" if success else "warning",
            message,
            handle=handle,
            stage=status.value,
            processed=processed,
            errors=errors,
            total_in_database=total_in_database,
            elapsed_sec=round(self._clock() - started, 3),
        )
        return result

    async def _count_rows(self, status: ProcessStatus) -> int:
        """Conteggio righe store; se la run è già fallita un errore di conteggio non la peggiora."""
        if status == ProcessStatus.COMPLETE:
            return await self.store.count()
        try:
            return await self.store.count()
        except PersistenceFailure as e:
            log_with_context("warning", f"[SCHEDULER] Could not count stored wines: {e}")
            return 0
