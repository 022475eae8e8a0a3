from __future__ import annotations

import hashlib
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from yakp_release import orchestrator, packager
from yakp_release.config import ReleaseConfig
from yakp_release.utils import CommandError
from yakp_release.workspace import Workspace

CARGO_TOML = """
[package]
name = "yakp"
version = "1.0.0"
edition = "2018"
"""


class FakeDocker:
    """Stands in for the docker CLI; images are keyed by their build context."""

    def __init__(self, config: ReleaseConfig) -> None:
        self.config = config
        self.commands: List[List[str]] = []
        self.sandbox_commands: List[List[str]] = []
        self.local_images = {config.environment.image}
        self.pull_fails = False
        self.build_fails = False
        self.compile_returncode = 0
        self.binary: Optional[bytes] = b"\x7fELF yakp 1.0.0"
        self.interrupt_compile = False
        self.interrupt_pull = False
        self.images: Dict[str, str] = {}
        self.on_sandbox: Optional[Callable[[], None]] = None

    def run_command(self, command: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        command = list(command)
        self.commands.append(command)
        check = kwargs.get("check", True)
        returncode, stdout, stderr = self._dispatch(command)
        if check and returncode != 0:
            raise CommandError(command, returncode, stdout, stderr)
        return subprocess.CompletedProcess(command, returncode, stdout, stderr)

    def _dispatch(self, command: List[str]) -> tuple[int, str, str]:
        verb = command[1]
        if verb == "image" and command[2] == "inspect":
            return (0, "[]", "") if command[3] in self.local_images else (1, "", "No such image")
        if verb == "pull":
            if self.interrupt_pull:
                raise KeyboardInterrupt
            if self.pull_fails:
                return 1, "", "pull access denied"
            self.local_images.add(command[2])
            return 0, "", ""
        if verb == "rm":
            return 1, "", "No such container"
        if verb == "build":
            if self.build_fails:
                return 1, "", "COPY failed: no source files"
            iidfile = Path(command[command.index("--iidfile") + 1])
            image_id = "sha256:" + self._context_digest(Path(command[-1]))
            iidfile.write_text(image_id)
            self.local_images.add(image_id)
            return 0, "", ""
        if verb == "tag":
            self.images[command[3]] = command[2]
            return 0, "", ""
        raise AssertionError(f"unexpected docker command {command}")

    @staticmethod
    def _context_digest(context: Path) -> str:
        digest = hashlib.sha256()
        for path in sorted(context.iterdir()):
            stat = path.stat()
            digest.update(path.name.encode())
            digest.update(f"{stat.st_mode}:{int(stat.st_mtime)}".encode())
            digest.update(path.read_bytes())
        return digest.hexdigest()

    def run_sandboxed(self, command: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        command = list(command)
        self.sandbox_commands.append(command)
        if self.on_sandbox is not None:
            self.on_sandbox()
        host_root = Path(command[command.index("-v") + 1].split(":", 1)[0])
        built = self.config.compiled_binary(host_root)
        if self.interrupt_compile:
            built.parent.mkdir(parents=True, exist_ok=True)
            built.write_bytes(b"\x7fELF partial")
            raise KeyboardInterrupt
        if self.compile_returncode == 0 and self.binary is not None:
            built.parent.mkdir(parents=True, exist_ok=True)
            built.write_bytes(self.binary)
        output = "   Compiling yakp v1.0.0\n" if self.compile_returncode == 0 else "error[E0425]: cannot find value\n"
        return subprocess.CompletedProcess(command, self.compile_returncode, output, "")


@pytest.fixture
def config() -> ReleaseConfig:
    return ReleaseConfig.load()


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    root = tmp_path / "yakp"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.rs").write_text("fn main() {}\n")
    (root / "Cargo.toml").write_text(CARGO_TOML)
    return Workspace(root)


@pytest.fixture
def docker(config: ReleaseConfig, monkeypatch: pytest.MonkeyPatch) -> FakeDocker:
    fake = FakeDocker(config)
    monkeypatch.setattr(orchestrator, "run_command", fake.run_command)
    monkeypatch.setattr(orchestrator, "run_sandboxed", fake.run_sandboxed)
    monkeypatch.setattr(packager, "run_command", fake.run_command)
    return fake
