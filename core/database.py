"""
Database core module per winelist-processor.

Gestisce engine asincrono, session factory e tabella vini deduplicata.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from core.config import get_config

logger = logging.getLogger(__name__)

# Base per i modelli
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WineDB(Base):
    """Vino estratto da carta vini, deduplicato per cache_key."""
    __tablename__ = 'wines'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    vintage = Column(String(50))
    producer = Column(Text)
    region = Column(Text)
    country = Column(String(100))
    varietals = Column(Text)

    # Campi descrittivi liberi (prezzo, stile, aroma, gusto, abbinamenti)
    auxiliary = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    # Chiave naturale: name|vintage|producer in minuscolo. Vincolo UNIQUE a livello DB.
    cache_key = Column(Text, nullable=False, unique=True, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def to_dict(self) -> dict:
        """Serializza riga per risposte API."""
        return {
            "id": self.id,
            "name": self.name,
            "vintage": self.vintage,
            "producer": self.producer,
            "region": self.region,
            "country": self.country,
            "varietals": self.varietals,
            "auxiliary": dict(self.auxiliary or {}),
            "cache_key": self.cache_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Crea engine asincrono per URL.

    Per sqlite in memoria usa StaticPool, così tutte le sessioni vedono lo stesso database.

    Args:
        database_url: URL con driver asincrono (postgresql+asyncpg, sqlite+aiosqlite)
        echo: Se True, logga tutte le query SQL
    """
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_async_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory asincrona legata a un engine."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


# Engine globale (inizializzato lazy)
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Ottiene engine globale dalla configurazione."""
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(get_config().get_async_database_url())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Ottiene session factory globale."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def dispose_engine() -> None:
    """Chiude engine globale (shutdown e test)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    Crea tabella wines con indice UNIQUE su cache_key se non esiste.

    Args:
        engine: Engine da usare (default: engine globale)
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[DATABASE] Tables ensured: %s", ", ".join(Base.metadata.tables.keys()))
