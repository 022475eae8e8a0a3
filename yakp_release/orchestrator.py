"""Hermetic compilation of the release binary.

The orchestrator owns the workspace for the duration of a build: it wipes
prior outputs, runs the pinned toolchain image against the mounted source
tree and extracts the resulting binary to the artifact path. Nothing from the
host toolchain or host environment reaches the sandbox.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import uuid
from typing import Iterator, List, Optional

from .config import ReleaseConfig
from .errors import EX_INTERRUPTED, CompileFailure, EnvironmentUnavailable, exit_status
from .models import Artifact, BuildEnvironment, StageResult
from .utils import CommandError, ensure_directory, run_command, run_sandboxed, sha256_file
from .workspace import Workspace

logger = logging.getLogger(__name__)


def sandbox_command(workspace: Workspace, environment: BuildEnvironment, container_name: str) -> List[str]:
    """The ``docker run`` invocation for one compilation.

    Depends only on the workspace location and the pinned environment, so two
    runs against the same inputs issue the same build.
    """

    command = [
        "docker",
        "run",
        "--rm",
        "--name",
        container_name,
        "-v",
        f"{workspace.root}:{environment.mount_path}",
        "-w",
        environment.mount_path,
    ]
    for key in sorted(environment.env):
        command.extend(["-e", f"{key}={environment.env[key]}"])
    command.append(environment.image)
    command.extend(environment.command)
    return command


class BuildOrchestrator:
    def __init__(self, workspace: Workspace, config: ReleaseConfig) -> None:
        self.workspace = workspace
        self.config = config

    def clean(self) -> StageResult:
        with self.workspace.lock():
            removed = self.workspace.clean()
        return StageResult("clean", "completed", {"removed": removed})

    def compile(self, environment: Optional[BuildEnvironment] = None) -> Artifact:
        environment = environment or self.config.environment
        with self.workspace.lock():
            try:
                return self._compile(environment)
            except KeyboardInterrupt as exc:
                self.config.artifact_path(self.workspace.root).unlink(missing_ok=True)
                raise CompileFailure("Compilation interrupted", exit_code=EX_INTERRUPTED) from exc

    def _compile(self, environment: BuildEnvironment) -> Artifact:
        artifact_path = self.config.artifact_path(self.workspace.root)
        # a stale artifact must never survive a failed compile
        artifact_path.unlink(missing_ok=True)

        self.ensure_environment(environment)
        container_name = f"yakp-build-{uuid.uuid4().hex[:12]}"
        command = sandbox_command(self.workspace, environment, container_name)
        logger.info("compiling in %s", environment.image)
        with self._sandbox(container_name):
            try:
                result = run_sandboxed(command, on_line=_log_sandbox_line)
            except FileNotFoundError as exc:
                raise EnvironmentUnavailable("docker executable not found") from exc

        if result.returncode != 0:
            raise CompileFailure(
                f"Build exited with status {result.returncode}",
                output=result.stdout,
                exit_code=exit_status(result.returncode),
            )
        return self._extract()

    def ensure_environment(self, environment: BuildEnvironment) -> None:
        """Make the pinned image available locally, pulling it if absent."""

        try:
            inspect = run_command(["docker", "image", "inspect", environment.image], check=False)
        except FileNotFoundError as exc:
            raise EnvironmentUnavailable("docker executable not found") from exc
        if inspect.returncode == 0:
            return

        logger.info("pulling %s", environment.image)
        try:
            run_command(["docker", "pull", environment.image])
        except CommandError as exc:
            raise EnvironmentUnavailable(
                f"Cannot obtain build environment {environment.image}",
                output=exc.stderr or exc.stdout,
            ) from exc

    @contextlib.contextmanager
    def _sandbox(self, container_name: str) -> Iterator[str]:
        try:
            yield container_name
        finally:
            # --rm covers normal exits; an interrupted client leaves the container behind
            run_command(["docker", "rm", "-f", container_name], check=False)

    def _extract(self) -> Artifact:
        built = self.config.compiled_binary(self.workspace.root)
        if not built.is_file() or built.stat().st_size == 0:
            raise CompileFailure(f"Build succeeded but produced no binary at {built}")

        destination = self.config.artifact_path(self.workspace.root)
        ensure_directory(destination.parent)
        partial = destination.with_name(f".{destination.name}.partial")
        try:
            shutil.copyfile(built, partial)
            os.chmod(partial, 0o755)
            os.replace(partial, destination)
        finally:
            partial.unlink(missing_ok=True)

        artifact = Artifact(
            path=destination,
            sha256=sha256_file(destination),
            size=destination.stat().st_size,
            version=self.workspace.version(),
        )
        logger.info("artifact %s sha256=%s", destination, artifact.sha256)
        return artifact


def _log_sandbox_line(line: str) -> None:
    logger.info("| %s", line)
