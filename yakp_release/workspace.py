from __future__ import annotations

import contextlib
import logging
import shutil
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional

from .errors import WorkspaceLocked
from .utils import LockHeld, exclusive_lock

try:  # pragma: no cover - tomllib is stdlib from 3.11 onwards
    import tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore

logger = logging.getLogger(__name__)

LOCK_NAME = ".yakp-release.lock"
BUILD_OUTPUTS = ("target", "dist")


class Workspace:
    """Source tree plus the scratch state a release run creates inside it."""

    def __init__(self, root: str | Path, outputs: tuple[str, ...] = BUILD_OUTPUTS) -> None:
        self.root = Path(root).resolve()
        self.outputs = outputs
        self._lock_depth = 0

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_NAME

    @property
    def locked(self) -> bool:
        return self._lock_depth > 0

    @contextlib.contextmanager
    def lock(self) -> Iterator["Workspace"]:
        """Exclusive access to the workspace; re-entrant for the holder."""

        if self._lock_depth:
            self._lock_depth += 1
            try:
                yield self
            finally:
                self._lock_depth -= 1
            return

        with contextlib.ExitStack() as stack:
            try:
                stack.enter_context(exclusive_lock(self.lock_path))
            except LockHeld as exc:
                raise WorkspaceLocked(f"Workspace {self.root} is in use by pid {exc.owner}") from exc
            self._lock_depth = 1
            try:
                yield self
            finally:
                self._lock_depth = 0

    def clean(self) -> List[str]:
        """Remove prior build outputs and return the ones that existed."""

        removed: List[str] = []
        for name in self.outputs:
            path = self.root / name
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
            else:
                continue
            logger.info("removed %s", path)
            removed.append(name)
        return removed

    def cargo_manifest(self) -> Mapping[str, Any]:
        manifest_path = self.root / "Cargo.toml"
        if not manifest_path.exists():
            return {}
        try:
            return tomllib.loads(manifest_path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError:
            logger.warning("ignoring unparseable %s", manifest_path)
            return {}

    def version(self) -> Optional[str]:
        package = self.cargo_manifest().get("package", {})
        if isinstance(package, dict) and isinstance(package.get("version"), str):
            return package["version"]
        return None
