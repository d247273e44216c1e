"""
Rate limiter globale per le chiamate di estrazione.

Condiviso da tutte le elaborazioni del processo: limita le chiamate concorrenti
al servizio esterno e impone un intervallo minimo tra due chiamate consecutive,
indipendentemente dal throttling per-elaborazione del Batch Scheduler.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ExtractionRateLimiter:
    """Semaforo + spaziatura minima tra chiamate."""

    def __init__(self, max_concurrency: int = 2, min_interval_seconds: float = 0.0):
        self.max_concurrency = max(1, max_concurrency)
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._spacing_lock = asyncio.Lock()
        self._last_call = 0.0
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Attende uno slot libero e la spaziatura minima, poi esegue il blocco."""
        async with self._semaphore:
            if self.min_interval_seconds:
                async with self._spacing_lock:
                    wait_seconds = self.min_interval_seconds - (time.monotonic() - self._last_call)
                    if wait_seconds > 0:
                        await asyncio.sleep(wait_seconds)
                    self._last_call = time.monotonic()
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1
