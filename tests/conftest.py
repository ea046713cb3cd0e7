"""Common test fixtures for the Eaiser notebook."""

import tempfile
from pathlib import Path

import pytest

from eaiser.config import EaiserConfig
from eaiser.models.db_models import get_session_factory, init_db
from eaiser.services.config_store import ConfigStore
from eaiser.services.notebook_service import NotebookService
from eaiser.storage.attachment_store import AttachmentStore
from eaiser.storage.category_repository import (
    CategoryRepository,
    ColorPresetRepository,
)
from eaiser.storage.category_tree import CategoryTree
from eaiser.storage.note_repository import NoteRepository


@pytest.fixture
def temp_dir():
    """Create a temporary base directory for database and attachments."""
    with tempfile.TemporaryDirectory() as base_dir:
        yield Path(base_dir)


@pytest.fixture
def test_config(temp_dir):
    """Settings rooted in the temporary directory."""
    return EaiserConfig(
        base_dir=temp_dir,
        database_path=Path("test_eaiser.db"),
        pdf_dir=Path("pdf"),
        image_dir=Path("images"),
        config_file=Path("eaiser.config.json"),
        script_timeout=5,
        chat_timeout=5,
        scripts_enabled=True,
    )


@pytest.fixture
def engine(test_config):
    """Initialized SQLite engine, disposed after the test."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def category_tree(session_factory):
    return CategoryTree(session_factory)


@pytest.fixture
def color_preset_repository(session_factory):
    return ColorPresetRepository(session_factory)


@pytest.fixture
def category_repository(session_factory, category_tree):
    return CategoryRepository(session_factory, tree=category_tree)


@pytest.fixture
def note_repository(session_factory, category_tree):
    return NoteRepository(session_factory, tree=category_tree)


@pytest.fixture
def attachment_store(test_config, note_repository):
    return AttachmentStore(
        test_config.get_pdf_dir(), test_config.get_image_dir(), note_repository
    )


@pytest.fixture
def config_store(test_config):
    """AI settings store with defaults written to the temp directory."""
    store = ConfigStore(test_config.get_config_file())
    store.load()
    return store


@pytest.fixture
def notebook_service(test_config, engine, config_store):
    """Create a NotebookService on the shared engine."""
    return NotebookService(test_config, engine=engine, config_store=config_store)
