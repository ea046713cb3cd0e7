"""SQLAlchemy database models for the Eaiser notebook engine."""

from sqlalchemy import (Boolean, Column, DateTime, Integer, String, Text,
                        create_engine, event, inspect, text)
from sqlalchemy.orm import declarative_base, sessionmaker

from eaiser.models.schema import NoteType, utc_now

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBColorPreset(Base):
    """Database model for a color preset."""
    __tablename__ = "color_presets"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    hex = Column(String(7), nullable=False)
    encrypted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of color preset."""
        return f"<ColorPreset(id={self.id}, name='{self.name}', hex='{self.hex}')>"


class DBCategory(Base):
    """Database model for a category.

    parent_id and color_preset_id carry no foreign-key constraint: deleting
    a parent or preset leaves the dangling id in place.
    """
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    color_preset_id = Column(Integer, nullable=True)
    parent_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        """Return string representation of category."""
        return f"<Category(id={self.id}, name='{self.name}', parent={self.parent_id})>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False, default="")
    language = Column(String(50), nullable=False, default="")
    snippet = Column(Text, nullable=False, default="")
    analysis = Column(Text, nullable=False, default="")
    content_md = Column(Text, nullable=False, default="")
    note_type = Column("type", Integer, nullable=False, default=NoteType.NORMAL.value,
                       index=True)
    file_path = Column(String(500), nullable=True)
    pdf_page = Column(Integer, nullable=False, default=1)
    category_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False, index=True)

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}', type={self.note_type})>"


def init_db(db_url: str):
    """Initialize the database and return the engine.

    Applies SQLite settings on every connection:
    - WAL (Write-Ahead Logging) mode for atomic writes
    - NORMAL synchronous mode
    """
    engine = create_engine(db_url, pool_pre_ping=True)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)

    # Run migrations for schema updates
    _migrate_add_missing_columns(engine)

    return engine


# (table, column, DDL) for columns added after the first release
_LATE_COLUMNS = [
    ("notes", "type", "ALTER TABLE notes ADD COLUMN type INTEGER NOT NULL DEFAULT 0"),
    ("notes", "file_path", "ALTER TABLE notes ADD COLUMN file_path VARCHAR(500)"),
    ("notes", "pdf_page", "ALTER TABLE notes ADD COLUMN pdf_page INTEGER NOT NULL DEFAULT 1"),
    ("color_presets", "encrypted",
     "ALTER TABLE color_presets ADD COLUMN encrypted BOOLEAN NOT NULL DEFAULT 0"),
]


def _migrate_add_missing_columns(engine) -> None:
    """Migration: add columns that older databases lack.

    SQLite doesn't support IF NOT EXISTS for ADD COLUMN, so we check
    the schema first. This is idempotent and safe to run multiple times.
    """
    inspector = inspect(engine)
    existing = {
        table: {col["name"] for col in inspector.get_columns(table)}
        for table in {t for t, _, _ in _LATE_COLUMNS}
    }

    with engine.connect() as conn:
        for table, column, ddl in _LATE_COLUMNS:
            if column not in existing[table]:
                conn.execute(text(ddl))
        conn.commit()


def get_session_factory(engine):
    """Get a session factory for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
