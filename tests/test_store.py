"""
Test Deduplication Store su sqlite in memoria (stesso upsert ON CONFLICT di PostgreSQL).
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from core.errors import PersistenceFailure
from ingest.store import WineStore
from ingest.types import WineRecord


def _wine(name, vintage=None, producer=None, **fields) -> WineRecord:
    return WineRecord(name=name, vintage=vintage, producer=producer, **fields)


class TestUpsert:
    """Test upsert deduplicato."""

    @pytest.mark.asyncio
    async def test_insert_returns_id(self, store):
        wine_id = await store.upsert(_wine("Opus One", "2018"))

        stored = await store.get_by_id(wine_id)
        assert stored.name == "Opus One"
        assert stored.cache_key == "opus one|2018|"
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_same_key_case_insensitive_collapses(self, store):
        first = await store.upsert(_wine("Opus One", "2018"))
        second = await store.upsert(_wine("opus one", "2018"))

        assert first == second
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_conflict_updates_fields(self, store):
        wine_id = await store.upsert(_wine("Sassicaia", "2016"))
        created_at = (await store.get_by_id(wine_id)).created_at

        await store.upsert(
            _wine("Sassicaia", "2016", region="Bolgheri", country="Italia", auxiliary={"price": "300"})
        )

        stored = await store.get_by_id(wine_id)
        assert stored.region == "Bolgheri"
        assert stored.country == "Italia"
        assert stored.auxiliary == {"price": "300"}
        assert stored.created_at == created_at
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_different_vintage_is_new_row(self, store):
        await store.upsert(_wine("Opus One", "2018"))
        await store.upsert(_wine("Opus One", "2019"))

        assert await store.count() == 2

    @pytest.mark.asyncio
    async def test_record_without_name_rejected(self, store):
        with pytest.raises(ValueError):
            await store.upsert(_wine("  "))
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_get_by_cache_key(self, store):
        await store.upsert(_wine("Tignanello", "2019", "Antinori"))

        stored = await store.get_by_cache_key("tignanello|2019|antinori")
        assert stored.producer == "Antinori"
        assert await store.get_by_cache_key("missing||") is None

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, store):
        assert await store.get_by_id(12345) is None


class TestList:
    """Test lista paginata con ricerca."""

    async def _seed(self, store):
        await store.upsert(_wine("Barolo", "2017", "Conterno", region="Piemonte", country="Italia"))
        await store.upsert(_wine("Amarone", "2015", "Quintarelli", region="Veneto", country="Italia"))
        await store.upsert(_wine("Barolo", "2016", "Conterno", region="Piemonte", country="Italia"))
        await store.upsert(_wine("Opus One", "2018", region="Napa Valley", country="USA"))

    @pytest.mark.asyncio
    async def test_ordered_by_name_then_vintage(self, store):
        await self._seed(store)
        page = await store.list(page=1, page_size=10)

        assert [(w.name, w.vintage) for w in page.rows] == [
            ("Amarone", "2015"),
            ("Barolo", "2016"),
            ("Barolo", "2017"),
            ("Opus One", "2018"),
        ]
        assert page.total_count == 4
        assert page.total_pages == 1

    @pytest.mark.asyncio
    async def test_pagination(self, store):
        await self._seed(store)
        page = await store.list(page=2, page_size=3)

        assert page.total_count == 4
        assert page.total_pages == 2
        assert [w.name for w in page.rows] == ["Opus One"]

    @pytest.mark.asyncio
    async def test_search_case_insensitive(self, store):
        await self._seed(store)

        by_region = await store.list(search="piemonte")
        assert by_region.total_count == 2

        by_country = await store.list(search="usa")
        assert [w.name for w in by_country.rows] == ["Opus One"]

        by_producer = await store.list(search="QUINTARELLI")
        assert by_producer.total_count == 1

    @pytest.mark.asyncio
    async def test_search_wildcards_are_literal(self, store):
        await self._seed(store)
        page = await store.list(search="%")

        assert page.total_count == 0
        assert page.total_pages == 1

    @pytest.mark.asyncio
    async def test_bounds_clamped(self, store):
        await self._seed(store)
        page = await store.list(page=0, page_size=1000)

        assert page.page == 1
        assert page.page_size == 100
        assert len(page.rows) == 4

        small = await store.list(page=-3, page_size=0)
        assert small.page == 1
        assert small.page_size == 1
        assert small.total_pages == 4

    @pytest.mark.asyncio
    async def test_to_dict(self, store):
        await self._seed(store)
        data = (await store.list(page_size=2)).to_dict()

        assert data["total_count"] == 4
        assert len(data["wines"]) == 2
        assert data["wines"][0]["name"] == "Amarone"


class TestErrorTranslation:
    """Test traduzione errori SQLAlchemy in PersistenceFailure."""

    def _failing_store(self, error) -> WineStore:
        session = MagicMock()
        session.execute.side_effect = error

        async def rollback():
            return None

        session.rollback = rollback

        class _SessionContext:
            async def __aenter__(self):
                return session

            async def __aexit__(self, *exc):
                return False

        return WineStore(lambda: _SessionContext())

    @pytest.mark.asyncio
    async def test_operational_error_is_unreachable(self):
        store = self._failing_store(OperationalError("SELECT 1", {}, Exception("connection refused")))

        with pytest.raises(PersistenceFailure) as exc_info:
            await store.count()
        assert exc_info.value.unreachable is True

    @pytest.mark.asyncio
    async def test_integrity_error_is_reachable_failure(self):
        store = self._failing_store(IntegrityError("INSERT", {}, Exception("constraint")))

        with pytest.raises(PersistenceFailure) as exc_info:
            await store.count()
        assert exc_info.value.unreachable is False

    @pytest.mark.asyncio
    async def test_ping_reports_error(self):
        store = self._failing_store(OperationalError("SELECT 1", {}, Exception("connection refused")))
        assert (await store.ping()).startswith("error:")
