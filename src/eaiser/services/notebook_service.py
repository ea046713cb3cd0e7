"""Service layer wiring the notebook components together."""

import logging
from typing import Iterable, List, Optional

from eaiser.config import EaiserConfig
from eaiser.exceptions import (
    CategoryNotFoundError,
    InvalidTypeError,
    MissingCredentialError,
)
from eaiser.models.db_models import get_session_factory, init_db
from eaiser.services.ai_chat import AIChatClient
from eaiser.services.config_store import ConfigStore
from eaiser.services.script_runner import ScriptRunner
from eaiser.storage.attachment_store import AttachmentStore
from eaiser.storage.category_repository import (
    CategoryRepository,
    ColorPresetRepository,
)
from eaiser.storage.category_tree import CategoryTree
from eaiser.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class NotebookService:
    """Explicit application context.

    Built once at startup from the process settings and handed to the RPC
    layer. Every component receives its collaborators here; nothing reads
    module-level state.
    """

    def __init__(
        self,
        settings: EaiserConfig,
        engine=None,
        config_store: Optional[ConfigStore] = None,
        chat_client: Optional[AIChatClient] = None,
    ):
        """Initialize the service.

        Args:
            settings: Paths and timeouts.
            engine: Pre-configured SQLAlchemy engine. Created from
                ``settings`` when None.
            config_store: AI settings store. Created and loaded from
                ``settings.config_file`` when None.
            chat_client: Chat client override (tests).
        """
        self.settings = settings
        self.engine = engine if engine is not None else init_db(settings.get_db_url())
        self.session_factory = get_session_factory(self.engine)

        self.tree = CategoryTree(self.session_factory)
        self.color_presets = ColorPresetRepository(self.session_factory)
        self.categories = CategoryRepository(self.session_factory, tree=self.tree)
        self.notes = NoteRepository(self.session_factory, tree=self.tree)
        self.attachments = AttachmentStore(
            settings.get_pdf_dir(), settings.get_image_dir(), self.notes
        )
        self.scripts = ScriptRunner(
            self.notes,
            timeout=settings.script_timeout,
            enabled=settings.scripts_enabled,
        )

        if config_store is None:
            config_store = ConfigStore(settings.get_config_file())
            config_store.load()
        self.config_store = config_store
        self.chat_client = chat_client or AIChatClient(
            config_store, timeout=settings.chat_timeout
        )
        logger.info("Notebook service initialized")

    def gather_context(
        self,
        note_ids: Optional[Iterable[int]] = None,
        category_ids: Optional[Iterable[int]] = None,
    ) -> List[str]:
        """Build labelled context passages for a chat request.

        Categories contribute their aggregated subtree content, notes their
        body. Empty passages are skipped; PDF notes are skipped with a
        warning since they have no text body.

        Raises:
            CategoryNotFoundError: For an unknown category id.
            NoteNotFoundError: For an unknown note id.
        """
        passages = []
        for category_id in category_ids or []:
            category = self.categories.get(category_id)
            if category is None:
                raise CategoryNotFoundError(category_id)
            content = self.notes.aggregate_category_content(category_id)
            if content.strip():
                passages.append(f"[Category: {category.name}]\n{content}")
            else:
                logger.warning(f"Category {category_id} has no content for context")

        for note_id in note_ids or []:
            note = self.notes.require(note_id)
            try:
                content = self.notes.get_content(note_id)
            except InvalidTypeError:
                logger.warning(f"Skipping PDF note {note_id} in chat context")
                continue
            if content.strip():
                passages.append(f"[Note: {note.title}]\n{content}")
        return passages

    def chat(
        self,
        prompt: str,
        note_ids: Optional[Iterable[int]] = None,
        category_ids: Optional[Iterable[int]] = None,
        extra_context: Optional[List[str]] = None,
    ) -> str:
        """Answer a prompt using the selected notes and categories as context."""
        # Fail on a missing key before touching the database
        if not self.config_store.get().api_key.strip():
            raise MissingCredentialError()
        contexts = list(extra_context or [])
        contexts.extend(self.gather_context(note_ids, category_ids))
        return self.chat_client.chat(prompt, contexts)

    def shutdown(self) -> None:
        """Release the database engine."""
        self.engine.dispose()
        logger.info("Notebook service shut down")
