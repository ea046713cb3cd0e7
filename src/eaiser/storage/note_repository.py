"""Repository for note storage and retrieval."""
import logging
from typing import List, Optional, Set

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from eaiser.exceptions import (
    ErrorCode,
    InvalidTypeError,
    NoteNotFoundError,
    StorageError,
    ValidationError,
)
from eaiser.models.db_models import DBNote
from eaiser.models.schema import (
    Note,
    NoteType,
    NoteUpdate,
    ensure_timezone_aware,
    utc_now,
)
from eaiser.storage.category_tree import CategoryTree

logger = logging.getLogger(__name__)

# Joins note passages when a whole folder is used as AI context
CONTENT_SEPARATOR = "\n\n---\n\n"


class NoteRepository:
    """CRUD plus scoped listing for notes.

    Notes come in three types (see NoteType). The type, file path and PDF
    page are never touched by ``update``; PDF notes are created only by
    AttachmentStore through ``create_pdf``.
    """

    def __init__(self, session_factory, tree: Optional[CategoryTree] = None):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
            tree: Category tree used to scope listings to a subtree.
        """
        self.session_factory = session_factory
        self.tree = tree or CategoryTree(session_factory)

    def _insert(self, **fields) -> Note:
        now = utc_now()
        with self.session_factory() as session:
            db_note = DBNote(created_at=now, updated_at=now, **fields)
            session.add(db_note)
            session.commit()
            note = self._db_note_to_model(db_note)
        logger.info(
            f"Created note {note.id} '{note.title}' "
            f"(type={note.note_type.name}, category={note.category_id})"
        )
        return note

    def create(
        self,
        title: str,
        language: str,
        snippet: str,
        analysis: str,
        category_id: Optional[int],
    ) -> Note:
        """Create a plain snippet note."""
        return self._insert(
            title=title,
            language=language,
            snippet=snippet,
            analysis=analysis,
            category_id=category_id,
            note_type=NoteType.NORMAL.value,
        )

    def create_markdown(
        self,
        title: str,
        language: str,
        content_md: str,
        category_id: Optional[int],
        note_type: NoteType = NoteType.NORMAL,
    ) -> Note:
        """Create a markdown or script note.

        Raises:
            InvalidTypeError: If note_type is PDF; PDFs come from import only.
        """
        note_type = NoteType(note_type)
        if note_type == NoteType.PDF:
            raise InvalidTypeError(
                "PDF notes can only be created by importing a PDF",
                note_type=note_type.name,
            )
        return self._insert(
            title=title,
            language=language,
            content_md=content_md,
            category_id=category_id,
            note_type=note_type.value,
        )

    def create_pdf(
        self, title: str, file_path: str, category_id: Optional[int]
    ) -> Note:
        """Create a PDF note referencing a storage-relative file name."""
        return self._insert(
            title=title,
            file_path=file_path,
            category_id=category_id,
            note_type=NoteType.PDF.value,
            pdf_page=1,
        )

    def get(self, id: int) -> Optional[Note]:
        with self.session_factory() as session:
            db_note = session.get(DBNote, id)
            if not db_note:
                return None
            return self._db_note_to_model(db_note)

    def require(self, id: int) -> Note:
        """Get a note or raise NoteNotFoundError."""
        note = self.get(id)
        if note is None:
            raise NoteNotFoundError(id)
        return note

    def update(self, id: int, changes: NoteUpdate) -> Note:
        """Apply the explicitly supplied fields of ``changes``.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        fields = changes.model_dump(exclude_unset=True)
        with self.session_factory() as session:
            db_note = self._get_for_write(session, id)
            for key, value in fields.items():
                if value is None and key != "category_id":
                    raise ValidationError(f"{key} cannot be null", field=key)
                setattr(db_note, key, value)
            db_note.updated_at = utc_now()
            session.commit()
            note = self._db_note_to_model(db_note)
        logger.info(f"Updated note {id}: {sorted(fields)}")
        return note

    def set_pdf_page(self, id: int, page: int) -> Note:
        """Record the reading position of a PDF note.

        Raises:
            NoteNotFoundError: If the note does not exist.
            InvalidTypeError: If the note is not a PDF.
            ValidationError: If page is below 1.
        """
        if page < 1:
            raise ValidationError("PDF page must be >= 1", field="pdf_page", value=page)
        with self.session_factory() as session:
            db_note = self._get_for_write(session, id)
            if db_note.note_type != NoteType.PDF.value:
                raise InvalidTypeError(
                    f"Note {id} is not a PDF note",
                    note_id=id,
                    note_type=NoteType(db_note.note_type).name,
                )
            db_note.pdf_page = page
            db_note.updated_at = utc_now()
            session.commit()
            return self._db_note_to_model(db_note)

    def delete(self, id: int) -> Note:
        """Delete a note row and return what was deleted.

        The backing file of a PDF note is left on disk; see
        AttachmentStore.find_orphaned_pdfs.
        """
        with self.session_factory() as session:
            db_note = self._get_for_write(session, id)
            note = self._db_note_to_model(db_note)
            session.delete(db_note)
            session.commit()
        logger.info(f"Deleted note {id}")
        return note

    def resolve_scope(self, category_id: int) -> Set[int]:
        """Category ids a scoped query covers, degrading to the category alone."""
        try:
            return self.tree.resolve_subtree(category_id)
        except StorageError as e:
            logger.warning(
                f"Subtree resolution failed for category {category_id}, "
                f"falling back to exact match: {e}"
            )
            return {category_id}

    def list(self, category_id: Optional[int] = None) -> List[Note]:
        """List notes, most recently updated first.

        Notes with an empty markdown body are hidden unless they are PDFs.
        With ``category_id`` the listing covers that category and all its
        descendants.
        """
        query = select(DBNote).where(
            or_(DBNote.content_md != "", DBNote.note_type == NoteType.PDF.value)
        )
        if category_id is not None:
            scope = self.resolve_scope(category_id)
            query = query.where(DBNote.category_id.in_(scope))
        query = query.order_by(DBNote.updated_at.desc(), DBNote.id.desc())

        with self.session_factory() as session:
            db_notes = session.execute(query).scalars().all()
            notes = [self._db_note_to_model(n) for n in db_notes]
        logger.debug(f"list(category_id={category_id}) -> {len(notes)} notes")
        return notes

    def get_content(self, id: int) -> str:
        """Get the markdown (or script) body of a note.

        Raises:
            NoteNotFoundError: If the note does not exist.
            InvalidTypeError: For PDF notes, which have no markdown body.
        """
        note = self.require(id)
        if note.is_pdf:
            raise InvalidTypeError(
                f"Note {id} is a PDF; it has no markdown content",
                note_id=id,
                note_type=note.note_type.name,
                code=ErrorCode.UNSUPPORTED_TYPE,
            )
        return note.content_md

    def aggregate_category_content(self, category_id: int) -> str:
        """Concatenate title and body of every non-PDF note in the subtree.

        Notes with an empty body are skipped. Passages are joined with
        CONTENT_SEPARATOR.
        """
        passages = []
        for note in self.list(category_id):
            if note.is_pdf or not note.content_md.strip():
                continue
            passages.append(f"# {note.title}\n\n{note.content_md}")
        return CONTENT_SEPARATOR.join(passages)

    def referenced_pdf_paths(self) -> Set[str]:
        """File names referenced by PDF notes."""
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.file_path).where(
                    DBNote.note_type == NoteType.PDF.value,
                    DBNote.file_path.is_not(None),
                )
            ).all()
        return {row[0] for row in rows}

    @staticmethod
    def _get_for_write(session: Session, id: int) -> DBNote:
        db_note = session.get(DBNote, id)
        if not db_note:
            raise NoteNotFoundError(id)
        return db_note

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        return Note(
            id=db_note.id,
            title=db_note.title or "",
            language=db_note.language or "",
            snippet=db_note.snippet or "",
            analysis=db_note.analysis or "",
            content_md=db_note.content_md or "",
            note_type=NoteType(db_note.note_type),
            file_path=db_note.file_path,
            pdf_page=db_note.pdf_page or 1,
            category_id=db_note.category_id,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )
