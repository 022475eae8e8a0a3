from __future__ import annotations

import contextlib
import fcntl
import hashlib
import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Callable, Iterator, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(command)} failed with exit code {returncode}\nSTDOUT:{stdout}\nSTDERR:{stderr}"
        )


class LockHeld(RuntimeError):
    """Raised when another holder has the exclusive lock on a file."""

    def __init__(self, path: Path, owner: Optional[int]) -> None:
        self.path = path
        self.owner = owner
        super().__init__(f"{path} is held by pid {owner if owner is not None else 'unknown'}")


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process."""

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    logger.debug("running %s", " ".join(command))
    result = subprocess.run(
        list(command),
        cwd=str(cwd) if cwd else None,
        env=process_env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


def run_sandboxed(
    command: Sequence[str],
    *,
    on_line: Callable[[str], None] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``command`` in its own process group, streaming merged output.

    On ``KeyboardInterrupt`` the whole process group is killed and reaped
    before the interrupt is re-raised, so no child outlives the caller.
    """

    logger.debug("running %s", " ".join(command))
    process = subprocess.Popen(
        list(command),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        text=True,
        start_new_session=True,
    )
    lines: List[str] = []
    try:
        assert process.stdout is not None
        for line in process.stdout:
            lines.append(line)
            if on_line is not None:
                on_line(line.rstrip("\n"))
        returncode = process.wait()
    except KeyboardInterrupt:
        _kill_group(process)
        raise
    finally:
        if process.stdout is not None:
            process.stdout.close()
    return subprocess.CompletedProcess(list(command), returncode, "".join(lines), "")


def _kill_group(process: subprocess.Popen[str]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    process.wait()


def _read_owner(path: Path) -> Optional[int]:
    try:
        return int(path.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


@contextlib.contextmanager
def exclusive_lock(path: str | Path) -> Iterator[Path]:
    """Hold an advisory lock on ``path`` for the duration of the block.

    The lock belongs to the open file, so the kernel drops it when the holder
    exits; a leftover file from a dead run never blocks a new one. The file
    records the holder's PID for error messages only.
    """

    path = Path(path)
    ensure_directory(path.parent)
    fd = os.open(str(path), os.O_CREAT | os.O_RDWR, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            raise LockHeld(path, _read_owner(path)) from exc
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        try:
            yield path
        finally:
            os.ftruncate(fd, 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def sha256_file(path: str | Path) -> str:
    """Compute the SHA256 hash of the provided file."""

    digest = hashlib.sha256()
    with open(path, "rb") as file_handle:
        for chunk in iter(lambda: file_handle.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()
