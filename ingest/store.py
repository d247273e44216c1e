"""
Deduplication Store - Persistenza vini con chiave naturale cache_key.

Conflitto su cache_key: aggiornamento (last write wins) con un unico
INSERT ... ON CONFLICT DO UPDATE sul vincolo UNIQUE.
"""
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import WineDB
from core.errors import PersistenceFailure
from ingest.types import WineRecord

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_SEARCH_COLUMNS = (
    WineDB.name,
    WineDB.vintage,
    WineDB.producer,
    WineDB.region,
    WineDB.country,
    WineDB.varietals,
)


@dataclass
class WinePage:
    """Pagina di vini salvati."""

    rows: List[WineDB]
    total_count: int
    total_pages: int
    page: int
    page_size: int
    search: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wines": [row.to_dict() for row in self.rows],
            "total_count": self.total_count,
            "total_pages": self.total_pages,
            "page": self.page,
            "page_size": self.page_size,
            "search": self.search,
        }


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class WineStore:
    """Store vini deduplicato su database relazionale."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str):
        """Sessione con traduzione errori SQLAlchemy in PersistenceFailure."""
        async with self.session_factory() as session:
            try:
                yield session
            except (OperationalError, InterfaceError, DisconnectionError, OSError) as e:
                await self._safe_rollback(session)
                logger.error(f"[STORE] Database unreachable during {operation}: {e}")
                raise PersistenceFailure(f"Database unreachable during {operation}: {e}", unreachable=True) from e
            except SQLAlchemyError as e:
                await self._safe_rollback(session)
                logger.error(f"[STORE] Error during {operation}: {e}")
                raise PersistenceFailure(f"Database error during {operation}: {e}") from e

    @staticmethod
    async def _safe_rollback(session: AsyncSession) -> None:
        try:
            await session.rollback()
        except (SQLAlchemyError, OSError) as rollback_error:
            logger.debug(f"[STORE] Rollback failed: {rollback_error}")

    async def upsert(self, record: WineRecord) -> int:
        """
        Inserisce o aggiorna un vino per cache_key.

        Args:
            record: WineRecord con name non vuoto

        Returns:
            id surrogato della riga (nuova o esistente)

        Raises:
            ValueError: Se il record non ha nome
            PersistenceFailure: Errore database
        """
        if not record.is_wine:
            raise ValueError("WineRecord senza nome: non persistibile")

        record.with_cache_key()
        now = datetime.now(timezone.utc)
        values = {
            "name": record.name.strip(),
            "vintage": record.vintage,
            "producer": record.producer,
            "region": record.region,
            "country": record.country,
            "varietals": record.varietals,
            "auxiliary": dict(record.auxiliary),
            "cache_key": record.cache_key,
            "created_at": now,
            "updated_at": now,
        }

        async with self._session("upsert") as session:
            dialect_name = session.get_bind().dialect.name
            insert = _DIALECT_INSERTS.get(dialect_name)
            if insert is None:
                raise PersistenceFailure(f"Unsupported database dialect for upsert: {dialect_name}")

            stmt = insert(WineDB).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[WineDB.cache_key],
                set_={
                    "name": stmt.excluded["name"],
                    "vintage": stmt.excluded["vintage"],
                    "producer": stmt.excluded["producer"],
                    "region": stmt.excluded["region"],
                    "country": stmt.excluded["country"],
                    "varietals": stmt.excluded["varietals"],
                    "auxiliary": stmt.excluded["auxiliary"],
                    "updated_at": stmt.excluded["updated_at"],
                },
            ).returning(WineDB.id)

            result = await session.execute(stmt)
            wine_id = result.scalar_one()
            await session.commit()

        logger.debug(f"[STORE] Upserted wine {wine_id}: {record.cache_key}")
        return wine_id

    async def get_by_id(self, wine_id: int) -> Optional[WineDB]:
        async with self._session("get_by_id") as session:
            return await session.get(WineDB, wine_id)

    async def get_by_cache_key(self, cache_key: str) -> Optional[WineDB]:
        async with self._session("get_by_cache_key") as session:
            result = await session.execute(select(WineDB).where(WineDB.cache_key == cache_key))
            return result.scalar_one_or_none()

    async def list(self, page: int = 1, page_size: int = 20, search: Optional[str] = None) -> WinePage:
        """
        Lista paginata con ricerca case-insensitive.

        Args:
            page: Pagina (>= 1, corretta se minore)
            page_size: Dimensione pagina (limitata a 1..100)
            search: Sottostringa cercata in nome, annata, produttore, regione, paese, vitigni

        Returns:
            WinePage ordinata per nome e annata
        """
        page = max(1, int(page or 1))
        page_size = max(1, min(MAX_PAGE_SIZE, int(page_size or 1)))
        search = (search or "").strip()

        count_stmt = select(func.count()).select_from(WineDB)
        rows_stmt = select(WineDB)

        if search:
            pattern = f"%{_escape_like(search)}%"
            condition = or_(*(column.ilike(pattern, escape="\\") for column in _SEARCH_COLUMNS))
            count_stmt = count_stmt.where(condition)
            rows_stmt = rows_stmt.where(condition)

        rows_stmt = (
            rows_stmt.order_by(WineDB.name.asc(), WineDB.vintage.asc(), WineDB.id.asc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )

        async with self._session("list") as session:
            total_count = (await session.execute(count_stmt)).scalar_one()
            rows = list((await session.execute(rows_stmt)).scalars().all())

        total_pages = max(1, math.ceil(total_count / page_size))
        logger.debug(f"[STORE] Retrieved {len(rows)} wines (page {page}/{total_pages}, total {total_count})")
        return WinePage(
            rows=rows,
            total_count=total_count,
            total_pages=total_pages,
            page=page,
            page_size=page_size,
            search=search,
        )

    async def count(self) -> int:
        async with self._session("count") as session:
            result = await session.execute(select(func.count()).select_from(WineDB))
            return result.scalar_one()

    async def ping(self) -> str:
        """Verifica connessione database, ritorna 'connected' o 'error: ...'."""
        try:
            async with self.session_factory() as session:
                await session.execute(select(1))
            return "connected"
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"[STORE] Connection check failed: {e}")
            return f"error: {str(e)}"
