"""Storage layer for the Eaiser notebook."""

from eaiser.storage.attachment_store import AttachmentStore
from eaiser.storage.category_repository import (
    CategoryRepository,
    ColorPresetRepository,
)
from eaiser.storage.category_tree import CategoryTree
from eaiser.storage.note_repository import NoteRepository

__all__ = [
    "AttachmentStore",
    "CategoryRepository",
    "CategoryTree",
    "ColorPresetRepository",
    "NoteRepository",
]
