"""Tests for the NotebookService wiring and chat context gathering."""
from unittest.mock import MagicMock

import pytest

from eaiser.exceptions import (
    CategoryNotFoundError,
    MissingCredentialError,
    NoteNotFoundError,
)
from eaiser.models.schema import NoteType
from eaiser.services.notebook_service import NotebookService


def test_service_builds_storage_roots(notebook_service, test_config):
    assert test_config.get_pdf_dir().is_dir()
    assert test_config.get_image_dir().is_dir()
    assert test_config.get_config_file().is_file()
    assert notebook_service.scripts.timeout == test_config.script_timeout


def test_gather_context_labels(notebook_service):
    service = notebook_service
    blender = service.categories.create("Blender")
    rigging = service.categories.create("Rigging", parent_id=blender.id)
    service.notes.create_markdown("IK", "", "bones", rigging.id)
    loose = service.notes.create_markdown("Loose", "", "standalone", None)

    passages = service.gather_context([loose.id], [blender.id])

    assert passages == [
        "[Category: Blender]\n# IK\n\nbones",
        "[Note: Loose]\nstandalone",
    ]


def test_gather_context_skips_pdfs_and_empty(notebook_service):
    service = notebook_service
    empty = service.categories.create("Empty")
    pdf = service.notes.create_pdf("Paper", "p.pdf", None)
    blank = service.notes.create_markdown("Blank", "", "  ", None)

    assert service.gather_context([pdf.id, blank.id], [empty.id]) == []


def test_gather_context_unknown_ids(notebook_service):
    with pytest.raises(CategoryNotFoundError):
        notebook_service.gather_context([], [404])
    with pytest.raises(NoteNotFoundError):
        notebook_service.gather_context([404], [])


def test_chat_without_key_fails_first(notebook_service):
    notebook_service.chat_client = MagicMock()

    # Unknown ids would raise NotFound; the credential check comes first
    with pytest.raises(MissingCredentialError):
        notebook_service.chat("hi", note_ids=[404], category_ids=[405])
    notebook_service.chat_client.chat.assert_not_called()


def test_chat_passes_context(test_config, engine, config_store):
    config_store.set(api_key="sk-test")
    chat_client = MagicMock()
    chat_client.chat.return_value = "answer"
    service = NotebookService(
        test_config, engine=engine, config_store=config_store, chat_client=chat_client
    )
    note = service.notes.create_markdown(
        "deploy", "bash", "make deploy", None, note_type=NoteType.SCRIPT
    )

    reply = service.chat("how do I deploy?", note_ids=[note.id], extra_context=["extra"])

    assert reply == "answer"
    chat_client.chat.assert_called_once_with(
        "how do I deploy?", ["extra", "[Note: deploy]\nmake deploy"]
    )
