# tests/test_mcp_server.py
"""Tests for the MCP server implementation."""
import json
from unittest.mock import MagicMock, patch

import pytest

from eaiser.exceptions import (
    CapabilityDisabledError,
    MissingCredentialError,
    NoteNotFoundError,
    RemoteAPIError,
    StorageError,
)
from eaiser.models.schema import (
    AIConfig,
    Category,
    CategoryUpdate,
    Note,
    NoteType,
    NoteUpdate,
    ScriptResult,
)
from eaiser.observability import metrics
from eaiser.server.mcp_server import EaiserMcpServer


class TestMcpServer:
    """Tests for the EaiserMcpServer class with a mocked service."""

    def setup_method(self):
        """Set up test environment before each test."""
        # Capture the tool decorator functions when registering
        self.registered_tools = {}
        self.mock_mcp = MagicMock()

        def mock_tool_decorator(*args, **kwargs):
            def tool_wrapper(func):
                name = kwargs.get('name')
                self.registered_tools[name] = func
                return func
            return tool_wrapper
        self.mock_mcp.tool = mock_tool_decorator

        self.mock_service = MagicMock()

        self.mcp_patcher = patch('eaiser.server.mcp_server.FastMCP', return_value=self.mock_mcp)
        self.service_patcher = patch(
            'eaiser.server.mcp_server.NotebookService', return_value=self.mock_service
        )
        self.atexit_patcher = patch('eaiser.server.mcp_server.atexit')
        self.mcp_patcher.start()
        self.service_patcher.start()
        self.atexit_patcher.start()

        self.server = EaiserMcpServer(MagicMock(server_name="eaiser-test"))

    def teardown_method(self):
        """Clean up after each test."""
        self.mcp_patcher.stop()
        self.service_patcher.stop()
        self.atexit_patcher.stop()

    def test_tools_registered(self):
        expected = {
            'eaiser_create_color_preset', 'eaiser_list_color_presets',
            'eaiser_update_color_preset', 'eaiser_delete_color_preset',
            'eaiser_create_category', 'eaiser_list_categories', 'eaiser_category_tree',
            'eaiser_update_category', 'eaiser_delete_category',
            'eaiser_create_note', 'eaiser_create_markdown_note', 'eaiser_list_notes',
            'eaiser_get_note', 'eaiser_get_note_content', 'eaiser_get_category_content',
            'eaiser_update_note', 'eaiser_set_pdf_page', 'eaiser_delete_note',
            'eaiser_import_pdf', 'eaiser_get_pdf_path', 'eaiser_get_pdf_content',
            'eaiser_find_orphaned_pdfs', 'eaiser_save_image', 'eaiser_get_image_content',
            'eaiser_run_script', 'eaiser_chat', 'eaiser_get_ai_config',
            'eaiser_update_ai_config', 'eaiser_get_config_file_path', 'eaiser_metrics',
        }
        assert expected <= set(self.registered_tools)

    def test_create_markdown_note_tool(self):
        self.mock_service.notes.create_markdown.return_value = Note(
            id=7, title="Deploy", content_md="make", note_type=NoteType.SCRIPT
        )

        result = self.registered_tools['eaiser_create_markdown_note'](
            title="Deploy", content_md="make", note_type="script"
        )

        data = json.loads(result)
        assert data["id"] == 7
        assert data["note_type"] == NoteType.SCRIPT.value
        self.mock_service.notes.create_markdown.assert_called_with(
            "Deploy", "", "make", None, note_type=NoteType.SCRIPT
        )

    def test_create_markdown_note_bad_type(self):
        result = self.registered_tools['eaiser_create_markdown_note'](
            title="x", content_md="y", note_type="spreadsheet"
        )
        assert result.startswith("Error:")
        assert "Invalid note type" in result

    def test_get_note_not_found(self):
        self.mock_service.notes.require.side_effect = NoteNotFoundError(42)
        result = self.registered_tools['eaiser_get_note'](note_id=42)
        assert result.startswith("Error:")
        assert "42" in result

    def test_update_note_sends_only_supplied_fields(self):
        self.mock_service.notes.update.return_value = Note(id=3, title="New")

        self.registered_tools['eaiser_update_note'](note_id=3, title="New")

        note_id, changes = self.mock_service.notes.update.call_args.args
        assert note_id == 3
        assert isinstance(changes, NoteUpdate)
        assert changes.model_dump(exclude_unset=True) == {"title": "New"}

    def test_update_category_move_to_root(self):
        self.mock_service.categories.update.return_value = Category(id=5, name="Moved")
        result = self.registered_tools['eaiser_update_category'](category_id=5, move_to_root=True)
        assert json.loads(result)["parent_id"] is None

        _, changes = self.mock_service.categories.update.call_args.args
        assert isinstance(changes, CategoryUpdate)
        assert changes.model_dump(exclude_unset=True) == {"parent_id": None}

    def test_list_notes_scoped(self):
        self.mock_service.notes.list.return_value = [Note(id=1, title="a", content_md="x")]
        result = self.registered_tools['eaiser_list_notes'](category_id=9)
        assert [n["id"] for n in json.loads(result)] == [1]
        self.mock_service.notes.list.assert_called_with(9)

    def test_run_script_tool(self):
        self.mock_service.scripts.run.return_value = ScriptResult(
            stdout="hi\n", success=True, exit_code=0
        )
        data = json.loads(self.registered_tools['eaiser_run_script'](note_id=1))
        assert data["stdout"] == "hi\n"
        assert data["success"] is True

    def test_run_script_disabled(self):
        self.mock_service.scripts.run.side_effect = CapabilityDisabledError("Script execution")
        result = self.registered_tools['eaiser_run_script'](note_id=1)
        assert result == "Error: Script execution is disabled by configuration"

    def test_chat_missing_key(self):
        self.mock_service.chat.side_effect = MissingCredentialError()
        result = self.registered_tools['eaiser_chat'](prompt="hi")
        assert result == "Error: AI API key is not configured"

    def test_chat_forwards_ids(self):
        self.mock_service.chat.return_value = "answer"
        result = self.registered_tools['eaiser_chat'](
            prompt="q", note_ids=[1], category_ids=[2], context_texts=["c"]
        )
        assert result == "answer"
        self.mock_service.chat.assert_called_with(
            "q", note_ids=[1], category_ids=[2], extra_context=["c"]
        )

    def test_ai_config_round_trip(self):
        self.mock_service.config_store.set.return_value = AIConfig(apiKey="sk", model="m")
        data = json.loads(self.registered_tools['eaiser_update_ai_config'](api_key="sk", model="m"))
        assert data["apiKey"] == "sk"
        assert data["model"] == "m"
        self.mock_service.config_store.set.assert_called_with(
            api_key="sk", api_url="", model="m"
        )

    def test_orphan_sweep_defaults_to_dry_run(self):
        self.mock_service.attachments.sweep_orphaned_pdfs.return_value = ["a.pdf"]
        result = self.registered_tools['eaiser_find_orphaned_pdfs']()
        assert json.loads(result) == ["a.pdf"]
        self.mock_service.attachments.sweep_orphaned_pdfs.assert_called_with(dry_run=True)

    def test_script_timeout_counted_in_metrics(self):
        metrics.reset()
        self.mock_service.scripts.run.return_value = ScriptResult(
            stdout="started\n", success=False, timed_out=True,
            error="Script timed out after 30 seconds",
        )
        data = json.loads(self.registered_tools['eaiser_run_script'](note_id=1))
        assert data["timed_out"] is True

        op = metrics.get_metrics()["run_script"]
        assert op["timeout_count"] == 1
        assert op["error_count"] == 1
        assert op["last_error"] == "Script timed out after 30 seconds"

    def test_remote_errors_counted_by_code(self):
        metrics.reset()
        self.mock_service.chat.side_effect = RemoteAPIError("bad gateway", status_code=502)
        result = self.registered_tools['eaiser_chat'](prompt="q")
        assert result.startswith("Error: bad gateway")

        op = metrics.get_metrics()["chat"]
        assert op["error_codes"] == {"REMOTE_API_ERROR": 1}
        assert metrics.get_summary()["error_codes"] == {"REMOTE_API_ERROR": 1}

    def test_metrics_tool_reset(self):
        metrics.reset()
        self.mock_service.chat.return_value = "answer"
        self.registered_tools['eaiser_chat'](prompt="q")

        data = json.loads(self.registered_tools['eaiser_metrics'](reset=True))
        assert data["operations"]["chat"]["success_count"] == 1
        assert data["summary"]["total_timeouts"] == 0

        data = json.loads(self.registered_tools['eaiser_metrics']())
        assert data["operations"] == {}
        assert data["summary"]["total_operations"] == 0


class TestErrorFormatting:
    """Tests for format_error_response."""

    @pytest.fixture
    def server(self):
        with patch('eaiser.server.mcp_server.FastMCP'), \
                patch('eaiser.server.mcp_server.NotebookService'), \
                patch('eaiser.server.mcp_server.atexit'):
            yield EaiserMcpServer(MagicMock(server_name="eaiser-test"))

    def test_domain_error_message(self, server):
        result = server.format_error_response(NoteNotFoundError(5))
        assert result.startswith("Error: ")
        assert "5" in result

    def test_storage_error_hides_path(self, server):
        error = StorageError("Failed", operation="read", path="/home/user/secret/eaiser.db")
        result = server.format_error_response(error)
        assert "/home/user" not in result

    def test_os_error_hides_details(self, server):
        result = server.format_error_response(OSError("/private/path denied"))
        assert "/private/path" not in result
        assert "ref:" in result

    def test_unexpected_error(self, server):
        result = server.format_error_response(RuntimeError("boom"))
        assert "unexpected" in result


class TestServerIntegration:
    """Tools against a real service on a temporary database."""

    @pytest.fixture
    def tools(self, test_config, engine):
        registered = {}
        mock_mcp = MagicMock()

        def mock_tool_decorator(*args, **kwargs):
            def tool_wrapper(func):
                registered[kwargs.get('name')] = func
                return func
            return tool_wrapper
        mock_mcp.tool = mock_tool_decorator

        with patch('eaiser.server.mcp_server.FastMCP', return_value=mock_mcp), \
                patch('eaiser.server.mcp_server.atexit'):
            EaiserMcpServer(test_config, engine=engine)
        return registered

    def test_folder_listing_end_to_end(self, tools):
        blender = json.loads(tools['eaiser_create_category'](name="Blender"))
        rigging = json.loads(tools['eaiser_create_category'](
            name="Rigging", parent_id=blender["id"]
        ))
        tools['eaiser_create_markdown_note'](
            title="IK", content_md="bones", category_id=rigging["id"]
        )

        listed = json.loads(tools['eaiser_list_notes'](category_id=blender["id"]))
        assert [n["title"] for n in listed] == ["IK"]

        tree = json.loads(tools['eaiser_category_tree']())
        assert tree[0]["category"]["name"] == "Blender"
        assert tree[0]["children"][0]["category"]["name"] == "Rigging"

    def test_cycle_rejected_end_to_end(self, tools):
        a = json.loads(tools['eaiser_create_category'](name="A"))
        b = json.loads(tools['eaiser_create_category'](name="B", parent_id=a["id"]))
        result = tools['eaiser_update_category'](category_id=a["id"], parent_id=b["id"])
        assert result.startswith("Error:")
        assert "cycle" in result

    def test_pdf_content_on_text_note(self, tools):
        note = json.loads(tools['eaiser_create_markdown_note'](title="T", content_md="x"))
        result = tools['eaiser_get_pdf_path'](note_id=note["id"])
        assert result.startswith("Error:")
