"""MCP server exposing the notebook operations as tools."""

import atexit
import json
import logging
import uuid
from typing import Any, List, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel

from eaiser.config import EaiserConfig
from eaiser.exceptions import EaiserError
from eaiser.models.schema import (
    CategoryUpdate,
    ColorPresetUpdate,
    NoteType,
    NoteUpdate,
)
from eaiser.observability import metrics, timed_operation
from eaiser.services.notebook_service import NotebookService

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_CONTENT_LENGTH = 5_000_000


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValueError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


def _dump(value: Any) -> str:
    """Serialize models (or lists/dicts of them) to JSON text."""
    def convert(item: Any) -> Any:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        if isinstance(item, dict):
            return {k: convert(v) for k, v in item.items()}
        if isinstance(item, (list, tuple, set)):
            return [convert(v) for v in item]
        if hasattr(item, "to_dict"):
            return item.to_dict()
        return item

    return json.dumps(convert(value), ensure_ascii=False, indent=2)


def _parse_note_type(value: str) -> NoteType:
    """Accept 'normal' / 'pdf' / 'script' or the integer codes."""
    text = str(value).strip()
    if text.isdigit():
        return NoteType(int(text))
    try:
        return NoteType[text.upper()]
    except KeyError:
        raise ValueError(
            f"Invalid note type: {value}. Valid types are: "
            f"{', '.join(t.name.lower() for t in NoteType)}"
        )


class EaiserMcpServer:
    """MCP server for the notebook."""

    def __init__(self, settings: EaiserConfig, engine=None):
        """Initialize the MCP server.

        Args:
            settings: Process settings (paths, timeouts).
            engine: Pre-configured SQLAlchemy engine shared by all
                repositories. Created from settings when None.
        """
        self.settings = settings
        self.mcp = FastMCP(settings.server_name)
        self.service = NotebookService(settings, engine=engine)
        atexit.register(self._shutdown)
        self._register_tools()
        logger.info("Eaiser MCP server initialized")

    def _shutdown(self) -> None:
        """Clean up resources on server exit."""
        self.service.shutdown()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, EaiserError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: {str(error)}"
        elif isinstance(error, (IOError, OSError)):
            # Don't expose paths or detailed file system messages
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _call(self, operation: str, func, **context) -> str:
        """Run a tool body with timing and uniform error replies."""
        with timed_operation(operation, **context) as op:
            try:
                return func()
            except Exception as e:
                op["error"] = e
                return self.format_error_response(e)

    def _register_tools(self) -> None:
        """Register MCP tools."""
        service = self.service

        # ---- color presets ----

        @self.mcp.tool(name="eaiser_create_color_preset")
        def eaiser_create_color_preset(name: str, hex: str, encrypted: bool = False) -> str:
            """Create a color preset.
            Args:
                name: Display name
                hex: Color as '#RRGGBB'
                encrypted: Marks categories using this preset as hidden
            """
            return self._call(
                "create_color_preset",
                lambda: _dump(service.color_presets.create(name, hex, encrypted)),
                name=name,
            )

        @self.mcp.tool(name="eaiser_list_color_presets")
        def eaiser_list_color_presets() -> str:
            """List color presets ordered by name."""
            return self._call(
                "list_color_presets", lambda: _dump(service.color_presets.list())
            )

        @self.mcp.tool(name="eaiser_update_color_preset")
        def eaiser_update_color_preset(
            preset_id: int,
            name: Optional[str] = None,
            hex: Optional[str] = None,
            encrypted: Optional[bool] = None,
        ) -> str:
            """Update a color preset. Omitted fields are left unchanged.
            Args:
                preset_id: ID of the preset
                name: New name
                hex: New color as '#RRGGBB'
                encrypted: New hidden flag
            """
            def run() -> str:
                supplied = {
                    k: v for k, v in
                    (("name", name), ("hex", hex), ("encrypted", encrypted))
                    if v is not None
                }
                return _dump(
                    service.color_presets.update(preset_id, ColorPresetUpdate(**supplied))
                )
            return self._call("update_color_preset", run, preset_id=preset_id)

        @self.mcp.tool(name="eaiser_delete_color_preset")
        def eaiser_delete_color_preset(preset_id: int) -> str:
            """Delete a color preset.
            Args:
                preset_id: ID of the preset
            """
            def run() -> str:
                service.color_presets.delete(preset_id)
                return f"Color preset {preset_id} deleted"
            return self._call("delete_color_preset", run, preset_id=preset_id)

        # ---- categories ----

        @self.mcp.tool(name="eaiser_create_category")
        def eaiser_create_category(
            name: str,
            color_preset_id: Optional[int] = None,
            parent_id: Optional[int] = None,
        ) -> str:
            """Create a category.
            Args:
                name: Display name
                color_preset_id: Optional color preset
                parent_id: Optional parent category; omit for a root category
            """
            return self._call(
                "create_category",
                lambda: _dump(service.categories.create(name, color_preset_id, parent_id)),
                name=name,
            )

        @self.mcp.tool(name="eaiser_list_categories")
        def eaiser_list_categories() -> str:
            """List all categories ordered by name."""
            return self._call(
                "list_categories", lambda: _dump(service.categories.list())
            )

        @self.mcp.tool(name="eaiser_category_tree")
        def eaiser_category_tree() -> str:
            """Get categories as a nested tree."""
            return self._call(
                "category_tree", lambda: _dump(service.tree.hierarchy())
            )

        @self.mcp.tool(name="eaiser_update_category")
        def eaiser_update_category(
            category_id: int,
            name: Optional[str] = None,
            color_preset_id: Optional[int] = None,
            parent_id: Optional[int] = None,
            move_to_root: bool = False,
            clear_color: bool = False,
        ) -> str:
            """Update a category. Omitted fields are left unchanged.
            Args:
                category_id: ID of the category
                name: New name
                color_preset_id: New color preset
                parent_id: New parent category
                move_to_root: Detach the category from its parent
                clear_color: Remove the color preset link
            """
            def run() -> str:
                supplied: dict = {}
                if name is not None:
                    supplied["name"] = name
                if clear_color:
                    supplied["color_preset_id"] = None
                elif color_preset_id is not None:
                    supplied["color_preset_id"] = color_preset_id
                if move_to_root:
                    supplied["parent_id"] = None
                elif parent_id is not None:
                    supplied["parent_id"] = parent_id
                return _dump(
                    service.categories.update(category_id, CategoryUpdate(**supplied))
                )
            return self._call("update_category", run, category_id=category_id)

        @self.mcp.tool(name="eaiser_delete_category")
        def eaiser_delete_category(category_id: int) -> str:
            """Delete a category. Child categories and notes are not deleted.
            Args:
                category_id: ID of the category
            """
            def run() -> str:
                service.categories.delete(category_id)
                return f"Category {category_id} deleted"
            return self._call("delete_category", run, category_id=category_id)

        # ---- notes ----

        @self.mcp.tool(name="eaiser_create_note")
        def eaiser_create_note(
            title: str,
            language: str = "",
            snippet: str = "",
            analysis: str = "",
            category_id: Optional[int] = None,
        ) -> str:
            """Create a snippet note.
            Args:
                title: Title of the note
                language: Language of the snippet
                snippet: Code snippet
                analysis: Free-form analysis
                category_id: Owning category
            """
            def run() -> str:
                _validate_input_lengths(title=title, content=snippet)
                return _dump(
                    service.notes.create(title, language, snippet, analysis, category_id)
                )
            return self._call("create_note", run, title=title[:30])

        @self.mcp.tool(name="eaiser_create_markdown_note")
        def eaiser_create_markdown_note(
            title: str,
            content_md: str,
            language: str = "",
            category_id: Optional[int] = None,
            note_type: str = "normal",
        ) -> str:
            """Create a markdown or script note.
            Args:
                title: Title of the note
                content_md: Markdown body, or the shell script for script notes
                language: Language tag
                category_id: Owning category
                note_type: 'normal' or 'script'
            """
            def run() -> str:
                _validate_input_lengths(title=title, content=content_md)
                return _dump(service.notes.create_markdown(
                    title, language, content_md, category_id,
                    note_type=_parse_note_type(note_type),
                ))
            return self._call("create_markdown_note", run, title=title[:30])

        @self.mcp.tool(name="eaiser_list_notes")
        def eaiser_list_notes(category_id: Optional[int] = None) -> str:
            """List notes, newest first.
            Args:
                category_id: Restrict to this category and everything below it
            """
            def run() -> str:
                notes = service.notes.list(category_id)
                return _dump(notes)
            return self._call("list_notes", run, category_id=category_id)

        @self.mcp.tool(name="eaiser_get_note")
        def eaiser_get_note(note_id: int) -> str:
            """Get a note with all its fields.
            Args:
                note_id: ID of the note
            """
            return self._call(
                "get_note", lambda: _dump(service.notes.require(note_id)), note_id=note_id
            )

        @self.mcp.tool(name="eaiser_get_note_content")
        def eaiser_get_note_content(note_id: int) -> str:
            """Get the markdown or script body of a note (not for PDFs).
            Args:
                note_id: ID of the note
            """
            return self._call(
                "get_note_content",
                lambda: service.notes.get_content(note_id),
                note_id=note_id,
            )

        @self.mcp.tool(name="eaiser_get_category_content")
        def eaiser_get_category_content(category_id: int) -> str:
            """Concatenate every text note in a category and its subcategories.
            Args:
                category_id: ID of the category
            """
            return self._call(
                "get_category_content",
                lambda: service.notes.aggregate_category_content(category_id),
                category_id=category_id,
            )

        @self.mcp.tool(name="eaiser_update_note")
        def eaiser_update_note(
            note_id: int,
            title: Optional[str] = None,
            language: Optional[str] = None,
            snippet: Optional[str] = None,
            analysis: Optional[str] = None,
            content_md: Optional[str] = None,
            category_id: Optional[int] = None,
        ) -> str:
            """Update a note. Omitted fields are left unchanged; the type never changes.
            Args:
                note_id: ID of the note
                title: New title
                language: New language tag
                snippet: New snippet
                analysis: New analysis
                content_md: New markdown or script body
                category_id: Move to this category
            """
            def run() -> str:
                _validate_input_lengths(title=title, content=content_md)
                supplied = {
                    k: v for k, v in (
                        ("title", title), ("language", language), ("snippet", snippet),
                        ("analysis", analysis), ("content_md", content_md),
                        ("category_id", category_id),
                    ) if v is not None
                }
                return _dump(service.notes.update(note_id, NoteUpdate(**supplied)))
            return self._call("update_note", run, note_id=note_id)

        @self.mcp.tool(name="eaiser_set_pdf_page")
        def eaiser_set_pdf_page(note_id: int, page: int) -> str:
            """Remember the page a PDF note was last viewed at.
            Args:
                note_id: ID of the PDF note
                page: Page number (1-based)
            """
            return self._call(
                "set_pdf_page",
                lambda: _dump(service.notes.set_pdf_page(note_id, page)),
                note_id=note_id,
            )

        @self.mcp.tool(name="eaiser_delete_note")
        def eaiser_delete_note(note_id: int) -> str:
            """Delete a note. A PDF note's file stays on disk.
            Args:
                note_id: ID of the note
            """
            def run() -> str:
                service.notes.delete(note_id)
                return f"Note {note_id} deleted"
            return self._call("delete_note", run, note_id=note_id)

        # ---- attachments ----

        @self.mcp.tool(name="eaiser_import_pdf")
        def eaiser_import_pdf(
            data_base64: str, file_name: str, category_id: Optional[int] = None
        ) -> str:
            """Import a PDF as a new note.
            Args:
                data_base64: PDF bytes encoded as base64
                file_name: Original file name; becomes the note title
                category_id: Owning category
            """
            return self._call(
                "import_pdf",
                lambda: _dump(
                    service.attachments.import_pdf_base64(data_base64, file_name, category_id)
                ),
                file_name=file_name,
            )

        @self.mcp.tool(name="eaiser_get_pdf_path")
        def eaiser_get_pdf_path(note_id: int) -> str:
            """Get the on-disk path of a PDF note.
            Args:
                note_id: ID of the PDF note
            """
            return self._call(
                "get_pdf_path",
                lambda: str(service.attachments.get_pdf_path(note_id)),
                note_id=note_id,
            )

        @self.mcp.tool(name="eaiser_get_pdf_content")
        def eaiser_get_pdf_content(note_id: int) -> str:
            """Get the bytes of a PDF note as base64.
            Args:
                note_id: ID of the PDF note
            """
            return self._call(
                "get_pdf_content",
                lambda: service.attachments.get_pdf_content(note_id),
                note_id=note_id,
            )

        @self.mcp.tool(name="eaiser_find_orphaned_pdfs")
        def eaiser_find_orphaned_pdfs(remove: bool = False) -> str:
            """List (and optionally remove) stored PDFs no note references.
            Args:
                remove: Delete the orphaned files instead of only listing them
            """
            return self._call(
                "find_orphaned_pdfs",
                lambda: _dump(service.attachments.sweep_orphaned_pdfs(dry_run=not remove)),
            )

        @self.mcp.tool(name="eaiser_save_image")
        def eaiser_save_image(image: str) -> str:
            """Store an image and return its storage name.
            Args:
                image: A 'data:<mime>;base64,<data>' URI or bare base64
            """
            return self._call("save_image", lambda: service.attachments.save_image(image))

        @self.mcp.tool(name="eaiser_get_image_content")
        def eaiser_get_image_content(name: str) -> str:
            """Read a stored image back as a data URI.
            Args:
                name: Storage name returned by eaiser_save_image
            """
            return self._call(
                "get_image_content",
                lambda: service.attachments.get_image_content(name),
                name=name,
            )

        # ---- scripts ----

        @self.mcp.tool(name="eaiser_run_script")
        def eaiser_run_script(note_id: int) -> str:
            """Run a script note with sh and return stdout, stderr and status.
            Args:
                note_id: ID of the script note
            """
            with timed_operation("run_script", note_id=note_id) as op:
                try:
                    result = service.scripts.run(note_id)
                except Exception as e:
                    op["error"] = e
                    return self.format_error_response(e)
                # A failed run is still a normal reply
                if not result.success:
                    op["error"] = result.error
                    op["timed_out"] = result.timed_out
                op["exit_code"] = result.exit_code
                return _dump(result)

        # ---- AI ----

        @self.mcp.tool(name="eaiser_chat")
        def eaiser_chat(
            prompt: str,
            note_ids: Optional[List[int]] = None,
            category_ids: Optional[List[int]] = None,
            context_texts: Optional[List[str]] = None,
        ) -> str:
            """Ask the AI model, using notes and categories as context.
            Args:
                prompt: The question
                note_ids: Notes whose content is attached as context
                category_ids: Categories whose whole subtree is attached as context
                context_texts: Extra free-form context passages
            """
            return self._call(
                "chat",
                lambda: service.chat(
                    prompt,
                    note_ids=note_ids,
                    category_ids=category_ids,
                    extra_context=context_texts,
                ),
                prompt_chars=len(prompt),
            )

        @self.mcp.tool(name="eaiser_get_ai_config")
        def eaiser_get_ai_config() -> str:
            """Get the AI endpoint settings (apiKey, apiURL, model)."""
            return self._call(
                "get_ai_config",
                lambda: _dump(service.config_store.get().to_file_dict()),
            )

        @self.mcp.tool(name="eaiser_update_ai_config")
        def eaiser_update_ai_config(
            api_key: str = "", api_url: str = "", model: str = ""
        ) -> str:
            """Update AI endpoint settings. Empty values are left unchanged.
            Args:
                api_key: Bearer token
                api_url: Full chat-completions URL
                model: Model name
            """
            return self._call(
                "update_ai_config",
                lambda: _dump(
                    service.config_store.set(api_key=api_key, api_url=api_url, model=model)
                    .to_file_dict()
                ),
            )

        @self.mcp.tool(name="eaiser_get_config_file_path")
        def eaiser_get_config_file_path() -> str:
            """Get the location of the AI settings file."""
            return str(service.config_store.path)

        @self.mcp.tool(name="eaiser_metrics")
        def eaiser_metrics(reset: bool = False) -> str:
            """Get per-operation timing, timeout and error-code counts.
            Args:
                reset: Clear the counters after reading them
            """
            snapshot = {
                "summary": metrics.get_summary(),
                "operations": metrics.get_metrics(),
            }
            if reset:
                metrics.reset()
                logger.info("Operation metrics reset")
            return _dump(snapshot)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
