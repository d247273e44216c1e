"""
Extractor - Estrazione strutturata di un vino da una riga di testo.

Una chiamata al servizio di estrazione (OpenAI, risposta JSON object) per riga.
"Non è un vino" è un ritorno normale (None); i fallimenti della chiamata vengono
propagati come eccezioni e gestiti dal Batch Scheduler.
"""
import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

import openai

from core.config import ProcessorConfig, get_config
from core.errors import ExtractionFailure, ServiceUnavailable
from ingest.rate_limiter import ExtractionRateLimiter
from ingest.types import AUXILIARY_FIELDS, WineRecord

logger = logging.getLogger(__name__)

YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")

SYSTEM_PROMPT = "You are a wine sommelier expert. Extract structured wine information from the text."

USER_PROMPT = """Extract wine information from this text: "{line}".
If this doesn't appear to be a wine entry, respond with {{}}.
Otherwise, return a JSON object with these fields (leave empty if not present):
{{
  "wine_name": "Full wine name",
  "vintage": "Year or vintage",
  "producer": "Winery or producer",
  "region": "Region of origin",
  "country": "Country of origin",
  "varietals": "Grape varietals",
  "price": "Price (numeric only, no currency)",
  "style": "Wine style (red, white, rose, sparkling, etc)",
  "aroma": "Brief description of aromas",
  "taste": "Brief description of taste profile",
  "food_pairings": "Recommended food pairings"
}}"""

# Inizializza client OpenAI
_openai_client = None


def get_openai_client(config: Optional[ProcessorConfig] = None):
    """Ottiene client OpenAI asincrono (singleton). None se la chiave non è configurata."""
    global _openai_client
    config = config or get_config()
    if not config.openai_api_key:
        return None
    if _openai_client is None:
        _openai_client = openai.AsyncOpenAI(
            api_key=config.openai_api_key,
            timeout=config.openai_timeout_seconds,
            max_retries=config.openai_max_retries,
        )
    return _openai_client


def _clean_value(value: Any) -> Optional[str]:
    """Normalizza un campo della risposta in stringa (liste unite con ', ')."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        parts = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return ", ".join(parts) or None
    text = str(value).strip()
    return text or None


def heuristic_record(line: str) -> WineRecord:
    """Record minimo senza servizio esterno: nome = riga originale, annata via regex (1900-2099)."""
    line = line.strip()
    record = WineRecord(name=line)
    match = YEAR_PATTERN.search(line)
    if match:
        record.vintage = match.group(0)
    return record.with_cache_key()


def parse_wine_payload(data: Dict[str, Any]) -> Optional[WineRecord]:
    """
    Converte il JSON del servizio in WineRecord.

    Returns:
        None se l'oggetto è vuoto o senza nome (non è un vino)
    """
    if not data:
        return None

    name = _clean_value(data.get("wine_name") or data.get("name"))
    if not name:
        return None

    auxiliary = {}
    for key in AUXILIARY_FIELDS:
        value = _clean_value(data.get(key))
        if value is not None:
            auxiliary[key] = value

    return WineRecord(
        name=name,
        vintage=_clean_value(data.get("vintage")),
        producer=_clean_value(data.get("producer")),
        region=_clean_value(data.get("region")),
        country=_clean_value(data.get("country")),
        varietals=_clean_value(data.get("varietals")),
        auxiliary=auxiliary,
    )


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


class WineExtractor:
    """Estrattore riga -> WineRecord."""

    def __init__(
        self,
        config: Optional[ProcessorConfig] = None,
        client=None,
        limiter: Optional[ExtractionRateLimiter] = None,
    ):
        self.config = config or get_config()
        self.client = client if client is not None else get_openai_client(self.config)
        self.limiter = limiter or ExtractionRateLimiter(
            max_concurrency=self.config.extraction_max_concurrency,
            min_interval_seconds=self.config.extraction_min_interval_seconds,
        )
        self.fallback_enabled = self.config.heuristic_fallback_enabled

    @property
    def available(self) -> bool:
        """True se l'estrazione può produrre risultati (servizio o fallback)."""
        return self.client is not None or self.fallback_enabled

    def ensure_available(self) -> None:
        """
        Raises:
            ServiceUnavailable: Se il servizio non è configurato e il fallback è disabilitato
        """
        if not self.available:
            raise ServiceUnavailable("Extraction service not configured (OPENAI_API_KEY missing)")

    async def extract(self, line: str) -> Optional[WineRecord]:
        """
        Estrae un vino da una riga.

        Args:
            line: Riga di testo grezzo (già filtrata dal chiamante)

        Returns:
            WineRecord con cache_key, None se la riga non è un vino

        Raises:
            ServiceUnavailable: Servizio non configurato, irraggiungibile o credenziali rifiutate
            ExtractionFailure: Chiamata fallita o risposta malformata (senza fallback)
        """
        line = line.strip()
        heuristic = heuristic_record(line)

        if self.client is None:
            if self.fallback_enabled:
                logger.debug(f"[EXTRACTOR] Heuristic extraction (no API key): {line[:30]}...")
                return heuristic
            raise ServiceUnavailable("Extraction service not configured (OPENAI_API_KEY missing)")

        try:
            async with self.limiter.slot():
                response = await self.client.chat.completions.create(
                    model=self.config.openai_model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": USER_PROMPT.format(line=line)},
                    ],
                    response_format={"type": "json_object"},
                    temperature=0.1,
                )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.error(f"[EXTRACTOR] Extraction service rejected credentials: {e}")
            raise ServiceUnavailable(f"Extraction service rejected credentials: {e}") from e
        except openai.APIConnectionError as e:
            # Include APITimeoutError: il client ha già esaurito i retry
            if self.fallback_enabled:
                logger.warning(f"[EXTRACTOR] Extraction service unreachable - using heuristic record for: {line[:30]}...")
                return heuristic
            logger.error(f"[EXTRACTOR] Extraction service unreachable: {e}")
            raise ServiceUnavailable(f"Extraction service unreachable: {e}") from e
        except (openai.APIError, asyncio.TimeoutError) as e:
            return self._fallback_or_raise(line, heuristic, f"Extraction call failed: {e}", e)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            logger.debug(f"[EXTRACTOR] Empty response for: {line[:30]}...")
            return None

        try:
            data = json.loads(_strip_code_fence(content))
        except json.JSONDecodeError as e:
            return self._fallback_or_raise(line, heuristic, f"Malformed extraction response: {e}", e)

        if not isinstance(data, dict):
            return self._fallback_or_raise(
                line, heuristic, f"Unexpected extraction response type: {type(data).__name__}", None
            )

        record = parse_wine_payload(data)
        if record is None:
            logger.debug(f"[EXTRACTOR] Not a wine: {line[:30]}...")
            return None

        # Annata dalla regex se il servizio non l'ha trovata
        if not record.vintage and heuristic.vintage:
            record.vintage = heuristic.vintage

        return record.with_cache_key()

    def _fallback_or_raise(
        self,
        line: str,
        heuristic: WineRecord,
        message: str,
        cause: Optional[BaseException],
    ) -> WineRecord:
        if self.fallback_enabled:
            logger.warning(f"[EXTRACTOR] {message} - using heuristic record for: {line[:30]}...")
            return heuristic
        logger.warning(f"[EXTRACTOR] {message} (line: {line[:30]}...)")
        raise ExtractionFailure(message) from cause
