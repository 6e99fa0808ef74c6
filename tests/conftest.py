"""Common test fixtures for notegraph."""

import logging

import pytest

from tests.fakes import ScriptedLlm
from notegraph.config import LlmConfig, LlmProvider, NotegraphConfig
from notegraph.models.db_models import get_session_factory, init_db
from notegraph.services.note_graph_service import NoteGraphService
from notegraph.storage.category_repository import CategoryRepository
from notegraph.storage.connection_repository import ConnectionRepository
from notegraph.storage.note_repository import NoteRepository


@pytest.fixture
def settings(tmp_path):
    """Engine settings pointing at a throwaway database, with no LLM."""
    return NotegraphConfig(
        base_dir=tmp_path,
        database_path=tmp_path / "db" / "test_notegraph.db",
        llm=LlmConfig(provider=LlmProvider.NONE),
    )


@pytest.fixture
def engine(settings):
    """Real SQLite engine with the schema created."""
    engine = init_db(settings.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def note_repository(session_factory):
    return NoteRepository(session_factory)


@pytest.fixture
def connection_repository(session_factory):
    return ConnectionRepository(session_factory)


@pytest.fixture
def category_repository(session_factory):
    return CategoryRepository(session_factory)


@pytest.fixture
def fake_llm():
    """Scripted LLM with no responses queued (every call fails)."""
    return ScriptedLlm()


@pytest.fixture
def service(settings, engine, fake_llm):
    """NoteGraphService on SQLite with the scripted LLM."""
    service = NoteGraphService(settings=settings, llm=fake_llm, engine=engine)
    yield service
    service.shutdown()


@pytest.fixture
def restore_notegraph_logger():
    """Undo handler and level changes made to the ``notegraph`` logger."""
    root = logging.getLogger("notegraph")
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
