"""Data models for the Eaiser notebook engine."""

import datetime
import re
from dataclasses import asdict, dataclass
from datetime import timezone
from enum import IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HEX_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes, so every row conversion goes
    through here.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def validate_hex_color(value: str) -> str:
    """Validate a '#RRGGBB' color string."""
    if not HEX_COLOR_PATTERN.match(value or ""):
        raise ValueError(f"Invalid hex color '{value}'. Expected format '#RRGGBB'.")
    return value


class NoteType(IntEnum):
    """Types of notes. Stored as integers."""

    NORMAL = 0  # Snippet or markdown document
    PDF = 1  # Imported PDF attachment, no markdown body
    SCRIPT = 2  # contentMD holds a shell script body


class ColorPreset(BaseModel):
    """A named color that categories can reference."""

    id: int = Field(..., description="ID of the preset")
    name: str = Field(..., description="Display name")
    hex: str = Field(..., description="Color as '#RRGGBB'")
    encrypted: bool = Field(
        default=False, description="Marks hidden/obfuscated categories"
    )
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("hex")
    @classmethod
    def validate_hex(cls, v: str) -> str:
        return validate_hex_color(v)


class Category(BaseModel):
    """A folder in the category tree."""

    id: int = Field(..., description="ID of the category")
    name: str = Field(..., description="Display name")
    color_preset_id: Optional[int] = Field(
        default=None, description="Linked color preset, if any"
    )
    parent_id: Optional[int] = Field(
        default=None, description="Parent category; None for a root"
    )
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


class Note(BaseModel):
    """A note row.

    ``file_path`` is set only for PDF notes and is always a name relative
    to the PDF storage root.
    """

    id: int = Field(..., description="ID of the note")
    title: str = Field(default="", description="Title of the note")
    language: str = Field(default="", description="Language tag (code snippets)")
    snippet: str = Field(default="", description="Code snippet")
    analysis: str = Field(default="", description="Free-form analysis")
    content_md: str = Field(
        default="", description="Markdown body, or the script body for scripts"
    )
    note_type: NoteType = Field(default=NoteType.NORMAL, description="Type of note")
    file_path: Optional[str] = Field(
        default=None, description="Storage-relative PDF name"
    )
    pdf_page: int = Field(default=1, description="Last viewed PDF page")
    category_id: Optional[int] = Field(default=None, description="Owning category")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_pdf(self) -> bool:
        return self.note_type == NoteType.PDF


# Partial updates: a field is applied iff it was explicitly supplied.
# Use ``model_dump(exclude_unset=True)`` to read the supplied fields.


class ColorPresetUpdate(BaseModel):
    name: Optional[str] = None
    hex: Optional[str] = None
    encrypted: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("hex")
    @classmethod
    def validate_hex(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_hex_color(v)


class CategoryUpdate(BaseModel):
    """Fields to change on a category.

    ``parent_id=None`` supplied explicitly moves the category to the root;
    leaving it out keeps the current parent.
    """

    name: Optional[str] = None
    color_preset_id: Optional[int] = None
    parent_id: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class NoteUpdate(BaseModel):
    """Fields to change on a note. Type, file path and PDF page are not here."""

    title: Optional[str] = None
    language: Optional[str] = None
    snippet: Optional[str] = None
    analysis: Optional[str] = None
    content_md: Optional[str] = None
    category_id: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class AIConfig(BaseModel):
    """AI endpoint settings as persisted in the JSON config file."""

    api_key: str = Field(default="", alias="apiKey")
    api_url: str = Field(
        default="https://api.xiaomimimo.com/v1/chat/completions", alias="apiURL"
    )
    model: str = Field(default="mimo-v2-flash", alias="model")

    model_config = ConfigDict(populate_by_name=True)

    def to_file_dict(self) -> Dict[str, str]:
        """Serialize with the on-disk key names."""
        return self.model_dump(by_alias=True)


@dataclass
class ScriptResult:
    """Outcome of running a script note.

    Attributes:
        stdout: Captured standard output, partial on failure or timeout.
        stderr: Captured standard error, partial on failure or timeout.
        success: True iff the process exited with status zero.
        error: Human-readable failure description.
        exit_code: Process exit status, None if it never ran or was killed.
        timed_out: True when the hard deadline killed the process.
    """

    stdout: str = ""
    stderr: str = ""
    success: bool = False
    error: Optional[str] = None
    exit_code: Optional[int] = None
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
