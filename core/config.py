"""
Configurazione per winelist-processor usando pydantic-settings.

Gestisce variabili d'ambiente, limiti di throttling e policy di estrazione.
"""
import logging
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Carica .env
load_dotenv()

logger = logging.getLogger(__name__)


class ProcessorConfig(BaseSettings):
    """Configurazione completa del processor."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(..., description="URL connessione PostgreSQL (o sqlite+aiosqlite in sviluppo)")

    # Server
    port: int = Field(default=8001, description="Porta server FastAPI")

    # OpenAI
    openai_api_key: str = Field(default="", description="API key OpenAI")
    openai_model: str = Field(default="gpt-4o", description="Modello OpenAI per estrazione riga")
    openai_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout singola chiamata estrazione")
    openai_max_retries: int = Field(default=2, ge=0, le=10, description="Retry interni client OpenAI")

    # Policy fallback: se True, chiave mancante o chiamata fallita -> record euristico
    heuristic_fallback_enabled: bool = Field(default=False, description="Abilita fallback euristico (regex annata)")

    # Rate limit globale (condiviso da tutte le elaborazioni)
    extraction_max_concurrency: int = Field(default=2, ge=1, le=50, description="Chiamate estrazione concorrenti max")
    extraction_min_interval_seconds: float = Field(default=0.0, ge=0.0, description="Intervallo minimo tra chiamate")

    # Throttling batch
    item_delay_multiplier: float = Field(default=1.0, ge=0.0, description="Moltiplicatore ritardo tra righe (0 = off)")
    batch_pause_seconds: float = Field(default=2.0, ge=0.0, description="Pausa tra batch")
    progress_update_every: int = Field(default=5, ge=1, description="Cadenza aggiornamento progress (righe)")
    sample_size: int = Field(default=20, ge=0, le=200, description="Vini campione nel risultato finale")
    max_run_seconds: float = Field(default=6 * 3600, ge=0.0, description="Budget tempo per elaborazione (0 = illimitato)")

    # Validazione input
    min_text_length: int = Field(default=10, ge=1, description="Lunghezza minima testo carta vini")
    min_line_chars: int = Field(default=4, ge=1, description="Caratteri non-spazio minimi per riga")

    # Registro progress
    progress_ttl_seconds: float = Field(default=3600.0, ge=0.0, description="TTL entry terminali (0 = mai)")
    progress_max_entries: int = Field(default=1000, ge=1, description="Numero massimo entry nel registro")

    # Processor info
    processor_name: str = Field(default="Winelist Processor", description="Nome processor")
    processor_version: str = Field(default="1.0.0", description="Versione processor")

    @property
    def extraction_configured(self) -> bool:
        """True se il servizio di estrazione ha una credenziale."""
        return bool(self.openai_api_key)

    def get_async_database_url(self) -> str:
        """Ritorna URL database con driver asincrono."""
        url = self.database_url
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    def validate_config(self) -> bool:
        """Valida configurazione critica."""
        errors = []

        if not self.database_url:
            errors.append("DATABASE_URL non configurato")

        if not self.openai_api_key:
            if self.heuristic_fallback_enabled:
                logger.warning("OPENAI_API_KEY non configurato - estrazione in modalità euristica")
            else:
                logger.warning("OPENAI_API_KEY non configurato - ingestion disabilitata (503)")

        if errors:
            error_msg = "❌ Configurazione processor mancante:\n" + "\n".join(f"  - {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info("✅ Configurazione processor validata con successo")
        return True


# Istanza globale configurazione
_config: ProcessorConfig | None = None


def get_config() -> ProcessorConfig:
    """Ottiene istanza configurazione (singleton)."""
    global _config
    if _config is None:
        _config = ProcessorConfig()
        _config.validate_config()
    return _config


def reset_config() -> None:
    """Azzera singleton (usato dai test)."""
    global _config
    _config = None
