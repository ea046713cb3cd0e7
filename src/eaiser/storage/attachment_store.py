"""File storage for PDF and image attachments.

Attachments live in two storage roots beside the database. Note rows
reference them by a name relative to the root; every path handed back to
a caller is root-joined from such a name.
"""
import base64
import binascii
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

from eaiser.exceptions import (
    EmptyInputError,
    ErrorCode,
    InvalidTypeError,
    MalformedInputError,
    StorageError,
)
from eaiser.models.schema import Note
from eaiser.storage.note_repository import NoteRepository
from eaiser.utils import sanitize_upload_name

logger = logging.getLogger(__name__)

DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]*)*),(?P<data>.*)$", re.S)

# Accepted image MIME types and their stored extension
IMAGE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}
EXTENSION_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}
DEFAULT_IMAGE_MIME = "image/png"


def _decode_base64(data: str, field: str) -> bytes:
    try:
        return base64.b64decode("".join(data.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInputError(f"Invalid base64 payload: {e}", field=field) from e


def parse_image_payload(payload: str) -> Tuple[str, bytes]:
    """Split a data-URI or raw base64 string into (mime type, bytes).

    Unknown or missing MIME types fall back to PNG.

    Raises:
        EmptyInputError: If the payload is blank.
        MalformedInputError: If the data-URI or base64 cannot be decoded.
    """
    if not payload or not payload.strip():
        raise EmptyInputError("Image payload is empty", field="image")

    payload = payload.strip()
    mime = DEFAULT_IMAGE_MIME
    if payload.startswith("data:"):
        match = DATA_URI_PATTERN.match(payload)
        if not match or ";base64" not in (match.group("params") or ""):
            raise MalformedInputError(
                "Image data-URI must look like 'data:<mime>;base64,<data>'",
                field="image",
            )
        declared = (match.group("mime") or "").lower()
        if declared in IMAGE_EXTENSIONS:
            mime = "image/jpeg" if declared == "image/jpg" else declared
        payload = match.group("data")

    return mime, _decode_base64(payload, "image")


class AttachmentStore:
    """Durable storage for PDF and image attachments.

    Roots are created on construction. A root that cannot be created is
    logged and left alone; operations against it fail later with a
    StorageError.
    """

    def __init__(self, pdf_dir: Path, image_dir: Path, notes: NoteRepository):
        """Initialize the store.

        Args:
            pdf_dir: Absolute storage root for PDFs.
            image_dir: Absolute storage root for images.
            notes: Repository used to create and look up PDF notes.
        """
        self.pdf_dir = Path(pdf_dir)
        self.image_dir = Path(image_dir)
        self.notes = notes
        for label, root in (("PDF", self.pdf_dir), ("image", self.image_dir)):
            try:
                root.mkdir(parents=True, exist_ok=True)
                logger.info(f"{label} storage directory initialized: {root}")
            except OSError as e:
                logger.error(f"Failed to create {label} storage directory {root}: {e}")

    # ---- path handling ----

    @staticmethod
    def _join(root: Path, name: str) -> Path:
        """Join a storage-relative name onto its root.

        Raises:
            EmptyInputError: If name is blank.
            MalformedInputError: If name is absolute or escapes the root.
        """
        if not name or not name.strip():
            raise EmptyInputError("Attachment name is empty", field="name")
        if (
            os.path.isabs(name)
            or "/" in name
            or "\\" in name
            or name in (".", "..")
        ):
            raise MalformedInputError(
                f"Attachment name '{name}' must be a plain file name",
                field="name",
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            )
        return root / name

    @staticmethod
    def _unique_name(root: Path, stem: str, suffix: str) -> str:
        name = f"{stem}{suffix}"
        counter = 1
        while (root / name).exists():
            name = f"{stem}_{counter}{suffix}"
            counter += 1
        return name

    @staticmethod
    def _write(path: Path, data: bytes, operation: str) -> None:
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(
                f"Failed to write attachment: {e}",
                operation=operation,
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    @staticmethod
    def _read(path: Path, operation: str) -> bytes:
        if not path.is_file():
            raise StorageError(
                "Attachment file is missing",
                operation=operation,
                path=str(path),
                code=ErrorCode.FILE_MISSING,
            )
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(
                f"Failed to read attachment: {e}",
                operation=operation,
                path=str(path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    # ---- PDFs ----

    def import_pdf(
        self, data: bytes, original_name: str, category_id: Optional[int]
    ) -> Note:
        """Store a PDF and create the note that references it.

        Two phases: the file is written first, then the row is inserted.
        If the insert fails the file is removed again. A crash between the
        phases leaves an orphan file for find_orphaned_pdfs to report.

        Args:
            data: Raw PDF bytes.
            original_name: Name of the uploaded file; becomes the note title.
            category_id: Owning category.

        Returns:
            The created PDF note.
        """
        stem = sanitize_upload_name(original_name) or "document"
        name = self._unique_name(self.pdf_dir, f"{int(time.time())}_{stem}", ".pdf")
        path = self._join(self.pdf_dir, name)
        self._write(path, data, "import_pdf")
        logger.debug(f"Staged PDF {name} ({len(data)} bytes)")

        title = os.path.splitext(original_name or "")[0] or stem
        try:
            note = self.notes.create_pdf(title=title, file_path=name, category_id=category_id)
        except Exception:
            try:
                path.unlink()
                logger.warning(f"Note creation failed, removed staged PDF {name}")
            except OSError as cleanup_error:
                logger.error(f"Failed to remove staged PDF {name}: {cleanup_error}")
            raise

        logger.info(f"Imported PDF {name} as note {note.id}")
        return note

    def import_pdf_base64(
        self, data_b64: str, original_name: str, category_id: Optional[int]
    ) -> Note:
        """Same as import_pdf, with the bytes given as base64."""
        if not data_b64 or not data_b64.strip():
            raise EmptyInputError("PDF payload is empty", field="pdf")
        return self.import_pdf(_decode_base64(data_b64, "pdf"), original_name, category_id)

    def get_pdf_path(self, note_id: int) -> Path:
        """Resolve the on-disk path of a PDF note.

        Raises:
            NoteNotFoundError: If the note does not exist.
            InvalidTypeError: If the note is not a PDF.
            StorageError: With FILE_MISSING if the file is gone.
        """
        note = self.notes.require(note_id)
        if not note.is_pdf:
            raise InvalidTypeError(
                f"Note {note_id} is not a PDF note",
                note_id=note_id,
                note_type=note.note_type.name,
            )
        if not note.file_path:
            raise StorageError(
                f"PDF note {note_id} has no file",
                operation="get_pdf_path",
                code=ErrorCode.FILE_MISSING,
            )
        path = self._join(self.pdf_dir, note.file_path)
        if not path.is_file():
            raise StorageError(
                f"PDF file for note {note_id} is missing",
                operation="get_pdf_path",
                path=str(path),
                code=ErrorCode.FILE_MISSING,
            )
        return path

    def get_pdf_content(self, note_id: int) -> str:
        """Get the PDF bytes of a note as base64."""
        path = self.get_pdf_path(note_id)
        return base64.b64encode(self._read(path, "get_pdf_content")).decode("ascii")

    def find_orphaned_pdfs(self) -> List[str]:
        """Stored PDF names that no note references."""
        if not self.pdf_dir.is_dir():
            return []
        referenced = self.notes.referenced_pdf_paths()
        return sorted(
            entry.name
            for entry in self.pdf_dir.iterdir()
            if entry.is_file() and entry.name not in referenced
        )

    def sweep_orphaned_pdfs(self, dry_run: bool = True) -> List[str]:
        """Remove unreferenced PDF files.

        Args:
            dry_run: Only report what would be removed.

        Returns:
            Names removed (or that would be removed).
        """
        orphans = self.find_orphaned_pdfs()
        if dry_run:
            return orphans
        removed = []
        for name in orphans:
            try:
                (self.pdf_dir / name).unlink()
                removed.append(name)
            except OSError as e:
                logger.warning(f"Failed to remove orphaned PDF {name}: {e}")
        logger.info(f"Swept {len(removed)} orphaned PDFs")
        return removed

    # ---- images ----

    def save_image(self, payload: str) -> str:
        """Store an image given as a data-URI or raw base64.

        Returns:
            The storage-relative name of the new file.
        """
        mime, data = parse_image_payload(payload)
        suffix = IMAGE_EXTENSIONS[mime]
        stem = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        name = self._unique_name(self.image_dir, stem, suffix)
        self._write(self._join(self.image_dir, name), data, "save_image")
        logger.info(f"Saved image {name} ({mime}, {len(data)} bytes)")
        return name

    def get_image_content(self, name: str) -> str:
        """Read a stored image back as a ``data:`` URI.

        The MIME type comes from the file extension, PNG when unknown.
        """
        path = self._join(self.image_dir, name)
        data = self._read(path, "get_image_content")
        mime = EXTENSION_MIME_TYPES.get(path.suffix.lower(), DEFAULT_IMAGE_MIME)
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


