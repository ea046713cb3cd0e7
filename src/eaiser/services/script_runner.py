"""Execution of script notes through a POSIX shell.

The script body is arbitrary text run with the privileges of this process.
Nothing beyond the wall-clock timeout confines it; the capability can be
switched off with EAISER_SCRIPTS_ENABLED=false.
"""
import logging
import os
import signal
import subprocess
from typing import Optional, Tuple, Union

from eaiser.exceptions import (
    CapabilityDisabledError,
    EmptyInputError,
    ErrorCode,
    InvalidTypeError,
)
from eaiser.models.schema import NoteType, ScriptResult
from eaiser.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_TIMEOUT = 30.0
# Grace period for reading leftover output once the process group is killed
DRAIN_TIMEOUT = 1.0


def _decode(data: Optional[Union[bytes, str]]) -> str:
    if not data:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


class ScriptRunner:
    """Runs the body of a script note as ``sh -c <body>``."""

    def __init__(
        self,
        notes: NoteRepository,
        timeout: float = DEFAULT_SCRIPT_TIMEOUT,
        enabled: bool = True,
        shell: str = "sh",
    ):
        self.notes = notes
        self.timeout = timeout
        self.enabled = enabled
        self.shell = shell

    def run(self, note_id: int) -> ScriptResult:
        """Run a script note and capture its outcome.

        Execution failures (non-zero exit, timeout, spawn errors) come back
        as a ScriptResult with ``success=False`` and whatever output was
        produced up to that point.

        Raises:
            CapabilityDisabledError: If script execution is switched off.
            NoteNotFoundError: If the note does not exist.
            InvalidTypeError: If the note is not a script.
            EmptyInputError: If the script body is blank.
        """
        if not self.enabled:
            raise CapabilityDisabledError("Script execution")

        note = self.notes.require(note_id)
        if note.note_type != NoteType.SCRIPT:
            raise InvalidTypeError(
                f"Note {note_id} is not a script note",
                note_id=note_id,
                note_type=note.note_type.name,
            )
        body = note.content_md.strip()
        if not body:
            raise EmptyInputError(
                f"Script note {note_id} is empty",
                field="content_md",
                code=ErrorCode.SCRIPT_EMPTY,
            )

        logger.info(f"Running script note {note_id} (timeout={self.timeout}s)")
        return self.run_command(body)

    def run_command(self, command: str) -> ScriptResult:
        """Run a shell command string under the hard timeout.

        Output is decoded as UTF-8 with undecodable bytes replaced, so
        binary or Latin-1 output never turns into an exception.
        """
        try:
            proc = subprocess.Popen(
                [self.shell, "-c", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                # Own session so a timeout can kill the whole process group
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start shell '{self.shell}': {e}")
            return ScriptResult(success=False, error=f"Failed to start shell: {e}")

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            stdout, stderr = self._drain(proc)
            logger.warning(f"Script timed out after {self.timeout}s (pid={proc.pid})")
            return ScriptResult(
                stdout=_decode(stdout),
                stderr=_decode(stderr),
                success=False,
                error=f"Script timed out after {self.timeout:g} seconds",
                timed_out=True,
            )

        result = ScriptResult(
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            success=proc.returncode == 0,
            exit_code=proc.returncode,
        )
        if not result.success:
            result.error = f"Script exited with status {proc.returncode}"
            logger.info(f"Script failed: {result.error}")
        return result

    @staticmethod
    def _drain(proc: subprocess.Popen) -> Tuple[Optional[bytes], Optional[bytes]]:
        """Collect output left in the pipes after the kill.

        A descendant that left the process group (``setsid``, double fork)
        can hold the pipes open indefinitely. After DRAIN_TIMEOUT the pipes
        are closed and whatever was read so far is returned.
        """
        try:
            return proc.communicate(timeout=DRAIN_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            logger.warning(
                f"Detached process still holds output pipes of pid {proc.pid}; "
                f"returning partial output"
            )
            for pipe in (proc.stdout, proc.stderr):
                if pipe is not None:
                    pipe.close()
            proc.wait()
            return e.output, e.stderr

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            proc.kill()
