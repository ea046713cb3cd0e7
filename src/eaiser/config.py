"""Configuration module for the Eaiser notebook engine."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from eaiser import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level overrides survive reinstalls
_USER_ENV = Path.home() / ".eaiser" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class EaiserConfig(BaseModel):
    """Process settings for the notebook engine.

    These are the write-once-at-startup values (paths, timeouts). The
    mutable AI credentials live in the JSON file managed by ConfigStore.
    """

    # Installation directory; relative paths below resolve against it
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("EAISER_BASE_DIR", "."))
    )
    database_path: Path = Field(
        default_factory=lambda: Path(os.getenv("EAISER_DATABASE_PATH", "eaiser.db"))
    )
    # Attachment storage roots
    pdf_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("EAISER_PDF_DIR", "pdf"))
    )
    image_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("EAISER_IMAGE_DIR", "images"))
    )
    # AI settings file (apiKey / apiURL / model)
    config_file: Path = Field(
        default_factory=lambda: Path(
            os.getenv("EAISER_CONFIG_FILE", "eaiser.config.json")
        )
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("EAISER_LOG_DIR")) if os.getenv("EAISER_LOG_DIR") else None
        )
    )
    # Hard deadlines, in seconds
    script_timeout: float = Field(
        default_factory=lambda: float(os.getenv("EAISER_SCRIPT_TIMEOUT", "30"))
    )
    chat_timeout: float = Field(
        default_factory=lambda: float(os.getenv("EAISER_CHAT_TIMEOUT", "60"))
    )
    # Script notes run arbitrary shell text with the privileges of this process
    scripts_enabled: bool = Field(
        default_factory=lambda: _env_flag("EAISER_SCRIPTS_ENABLED", "true")
    )
    server_name: str = Field(default=os.getenv("EAISER_SERVER_NAME", "eaiser"))
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "EaiserConfig":
        """Reject non-positive deadlines."""
        if self.script_timeout <= 0:
            raise ValueError("script_timeout must be > 0")
        if self.chat_timeout <= 0:
            raise ValueError("chat_timeout must be > 0")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_pdf_dir(self) -> Path:
        return self.get_absolute_path(self.pdf_dir)

    def get_image_dir(self) -> Path:
        return self.get_absolute_path(self.image_dir)

    def get_config_file(self) -> Path:
        return self.get_absolute_path(self.config_file)


# Default instance for the entry point; components take settings explicitly
config = EaiserConfig()
