"""Tests for PDF and image attachment storage."""
import base64

import pytest

from eaiser.exceptions import (
    EmptyInputError,
    ErrorCode,
    InvalidTypeError,
    MalformedInputError,
    NoteNotFoundError,
    StorageError,
)
from eaiser.models.schema import NoteType
from eaiser.storage.attachment_store import parse_image_payload
from eaiser.utils import sanitize_upload_name

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


class TestSanitizeUploadName:
    def test_spaces_and_extension(self):
        assert sanitize_upload_name("My Paper.pdf") == "My_Paper"

    def test_separators(self):
        assert sanitize_upload_name("dir/sub\\file.PDF") == "dir_sub_file"

    def test_empty(self):
        assert sanitize_upload_name("") == ""


class TestPdfImport:
    """Tests for importing and reading PDFs."""

    def test_import_round_trip(self, attachment_store, test_config):
        note = attachment_store.import_pdf(PDF_BYTES, "My Paper.pdf", None)

        assert note.note_type == NoteType.PDF
        assert note.title == "My Paper"
        assert note.pdf_page == 1
        assert note.file_path.endswith("_My_Paper.pdf")
        assert "/" not in note.file_path

        path = attachment_store.get_pdf_path(note.id)
        assert path.parent == test_config.get_pdf_dir()
        assert path.read_bytes() == PDF_BYTES
        assert base64.b64decode(attachment_store.get_pdf_content(note.id)) == PDF_BYTES

    def test_import_base64(self, attachment_store):
        encoded = base64.b64encode(PDF_BYTES).decode("ascii")
        note = attachment_store.import_pdf_base64(encoded, "doc.pdf", 4)
        assert note.category_id == 4
        assert attachment_store.get_pdf_path(note.id).read_bytes() == PDF_BYTES

    def test_import_base64_malformed(self, attachment_store):
        with pytest.raises(MalformedInputError):
            attachment_store.import_pdf_base64("!!not base64!!", "doc.pdf", None)
        assert list(attachment_store.pdf_dir.iterdir()) == []

    def test_import_base64_empty(self, attachment_store):
        with pytest.raises(EmptyInputError):
            attachment_store.import_pdf_base64("  ", "doc.pdf", None)

    def test_same_name_twice_gets_distinct_files(self, attachment_store):
        first = attachment_store.import_pdf(PDF_BYTES, "same.pdf", None)
        second = attachment_store.import_pdf(PDF_BYTES, "same.pdf", None)
        assert first.file_path != second.file_path

    def test_traversal_name_stays_in_root(self, attachment_store):
        note = attachment_store.import_pdf(PDF_BYTES, "../../etc/passwd.pdf", None)
        path = attachment_store.get_pdf_path(note.id)
        assert path.parent == attachment_store.pdf_dir

    def test_failed_insert_removes_staged_file(self, attachment_store, monkeypatch):
        """When the note row cannot be created the PDF file is removed again."""
        def fail(**kwargs):
            raise StorageError("insert failed", operation="create_pdf")

        monkeypatch.setattr(attachment_store.notes, "create_pdf", fail)

        with pytest.raises(StorageError):
            attachment_store.import_pdf(PDF_BYTES, "doomed.pdf", None)
        assert list(attachment_store.pdf_dir.iterdir()) == []

    def test_get_pdf_path_errors(self, attachment_store, note_repository):
        with pytest.raises(NoteNotFoundError):
            attachment_store.get_pdf_path(404)

        text = note_repository.create_markdown("T", "", "x", None)
        with pytest.raises(InvalidTypeError):
            attachment_store.get_pdf_path(text.id)

        note = attachment_store.import_pdf(PDF_BYTES, "gone.pdf", None)
        attachment_store.get_pdf_path(note.id).unlink()
        with pytest.raises(StorageError) as exc_info:
            attachment_store.get_pdf_path(note.id)
        assert exc_info.value.code == ErrorCode.FILE_MISSING

    def test_delete_note_leaves_file_as_orphan(self, attachment_store, note_repository):
        kept = attachment_store.import_pdf(PDF_BYTES, "kept.pdf", None)
        dropped = attachment_store.import_pdf(PDF_BYTES, "dropped.pdf", None)
        note_repository.delete(dropped.id)

        assert attachment_store.find_orphaned_pdfs() == [dropped.file_path]

        # Dry run removes nothing
        assert attachment_store.sweep_orphaned_pdfs() == [dropped.file_path]
        assert (attachment_store.pdf_dir / dropped.file_path).exists()

        assert attachment_store.sweep_orphaned_pdfs(dry_run=False) == [dropped.file_path]
        assert not (attachment_store.pdf_dir / dropped.file_path).exists()
        assert attachment_store.get_pdf_path(kept.id).exists()
        assert attachment_store.find_orphaned_pdfs() == []


class TestImages:
    """Tests for saving and reading images."""

    def test_data_uri_round_trip(self, attachment_store):
        encoded = base64.b64encode(PNG_BYTES).decode("ascii")
        name = attachment_store.save_image(f"data:image/png;base64,{encoded}")

        assert name.endswith(".png")
        assert (attachment_store.image_dir / name).read_bytes() == PNG_BYTES
        assert attachment_store.get_image_content(name) == f"data:image/png;base64,{encoded}"

    def test_jpeg_extension_and_mime(self, attachment_store):
        encoded = base64.b64encode(b"\xff\xd8\xff\xe0jpeg").decode("ascii")
        name = attachment_store.save_image(f"data:image/jpeg;base64,{encoded}")
        assert name.endswith(".jpg")
        assert attachment_store.get_image_content(name).startswith("data:image/jpeg;base64,")

    def test_raw_base64_defaults_to_png(self, attachment_store):
        name = attachment_store.save_image(base64.b64encode(PNG_BYTES).decode("ascii"))
        assert name.endswith(".png")

    def test_names_are_unique(self, attachment_store):
        payload = base64.b64encode(PNG_BYTES).decode("ascii")
        names = {attachment_store.save_image(payload) for _ in range(5)}
        assert len(names) == 5

    def test_malformed_payloads(self, attachment_store):
        with pytest.raises(EmptyInputError):
            attachment_store.save_image("")
        with pytest.raises(MalformedInputError):
            attachment_store.save_image("data:image/png,notbase64")
        with pytest.raises(MalformedInputError):
            attachment_store.save_image("data:image/png;base64,%%%")

    def test_missing_image(self, attachment_store):
        with pytest.raises(StorageError) as exc_info:
            attachment_store.get_image_content("nothing.png")
        assert exc_info.value.code == ErrorCode.FILE_MISSING

    @pytest.mark.parametrize("name", ["../eaiser.db", "/etc/passwd", "a\\b.png", ".."])
    def test_traversal_rejected(self, attachment_store, name):
        with pytest.raises(MalformedInputError) as exc_info:
            attachment_store.get_image_content(name)
        assert exc_info.value.code == ErrorCode.PATH_TRAVERSAL_DETECTED

    def test_parse_unknown_mime_falls_back_to_png(self):
        encoded = base64.b64encode(b"bytes").decode("ascii")
        mime, data = parse_image_payload(f"data:image/bmp;base64,{encoded}")
        assert mime == "image/png"
        assert data == b"bytes"
