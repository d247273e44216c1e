"""
Configurazione pytest e fixture comuni.
"""
import pytest
import pytest_asyncio

from core.config import ProcessorConfig
from core.database import create_engine_for_url, create_session_factory, create_tables
from core.progress import ProgressTracker
from ingest.store import WineStore

from tests.mocks import FakeExtractor

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def make_config(**overrides) -> ProcessorConfig:
    """Configurazione di test: nessun ritardo, progress a ogni riga, nessun .env."""
    values = {
        "database_url": TEST_DATABASE_URL,
        "openai_api_key": "sk-test",
        "item_delay_multiplier": 0.0,
        "batch_pause_seconds": 0.0,
        "progress_update_every": 1,
        "extraction_min_interval_seconds": 0.0,
    }
    values.update(overrides)
    return ProcessorConfig(_env_file=None, **values)


@pytest.fixture
def processor_config():
    """Fixture per configurazione processor."""
    return make_config()


@pytest_asyncio.fixture
async def engine():
    """Database sqlite in memoria con tabella wines."""
    engine = create_engine_for_url(TEST_DATABASE_URL)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return WineStore(create_session_factory(engine))


@pytest.fixture
def tracker():
    return ProgressTracker()


@pytest.fixture
def fake_extractor():
    """Estrattore finto basato sul record euristico."""
    return FakeExtractor()


@pytest.fixture
def sample_wine_list():
    """Fixture per carta vini di esempio."""
    return "Opus One 2018\nX\nChâteau Margaux 2015 Bordeaux\n"
