"""Process-wide AI settings backed by a JSON file."""
import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from eaiser.exceptions import ErrorCode, StorageError
from eaiser.models.schema import AIConfig
from eaiser.utils import ReadWriteLock

logger = logging.getLogger(__name__)


class ConfigStore:
    """Holds apiKey / apiURL / model behind a reader/writer lock.

    The file path is fixed at construction. Disk writes happen after the
    write lock is released, so two concurrent ``set`` calls may land on
    disk in either order; the in-memory state follows lock order.
    """

    def __init__(self, path: Path, defaults: Optional[AIConfig] = None):
        self.path = Path(path)
        self._lock = ReadWriteLock()
        self._config = (defaults or AIConfig()).model_copy()

    def load(self) -> AIConfig:
        """Read the settings file, creating it with defaults when absent.

        The API key is always taken from the file; URL and model only when
        non-empty. A file that cannot be read or parsed is logged and the
        current values are kept.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.info(f"Config file not found, writing defaults to {self.path}")
            try:
                self._write(self.get())
            except StorageError as e:
                logger.error(f"Failed to save default config: {e}")
            return self.get()
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config file {self.path}, using defaults: {e}")
            return self.get()

        try:
            loaded = AIConfig.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Invalid config file {self.path}, using defaults: {e}")
            return self.get()

        with self._lock.write_locked():
            self._config.api_key = loaded.api_key
            if loaded.api_url:
                self._config.api_url = loaded.api_url
            if loaded.model:
                self._config.model = loaded.model
            snapshot = self._config.model_copy()
        logger.info(f"Config loaded from: {self.path}")
        return snapshot

    def get(self) -> AIConfig:
        """Return a copy of the current settings."""
        with self._lock.read_locked():
            return self._config.model_copy()

    def set(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        model: Optional[str] = None,
    ) -> AIConfig:
        """Apply the non-empty arguments and persist the full snapshot.

        Empty or omitted fields are left untouched.

        Raises:
            StorageError: If the snapshot cannot be written. The in-memory
                update has already happened at that point.
        """
        with self._lock.write_locked():
            if api_key:
                self._config.api_key = api_key
            if api_url:
                self._config.api_url = api_url
            if model:
                self._config.model = model
            snapshot = self._config.model_copy()

        self._write(snapshot)
        return snapshot

    def _write(self, snapshot: AIConfig) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_file_dict(), f, indent=2)
        except OSError as e:
            raise StorageError(
                f"Failed to save config: {e}",
                operation="save_config",
                path=str(self.path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        logger.info(f"Config saved to: {self.path}")
