"""Utility functions for the Eaiser notebook engine."""
import os
import threading
from contextlib import contextmanager


def sanitize_upload_name(original_name: str) -> str:
    """Turn an uploaded file name into a storage name stem.

    Strips the extension and replaces spaces, slashes and backslashes with
    underscores.

    Examples:
        "My Paper.pdf" -> "My_Paper"
        "dir/sub\\file.PDF" -> "dir_sub_file"

    Args:
        original_name: The name as supplied by the caller.

    Returns:
        The sanitized stem, possibly empty.
    """
    stem, _ = os.path.splitext(original_name or "")
    for ch in (" ", "/", "\\"):
        stem = stem.replace(ch, "_")
    return stem


class ReadWriteLock:
    """Many readers or one writer.

    Writers are preferred: once a writer is waiting, new readers block
    until it has finished.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
