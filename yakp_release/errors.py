"""Failure taxonomy for the release pipeline.

Every error aborts the remainder of a run and maps to a non-zero exit code.
Errors raised by a sandboxed or docker process carry that process's exit
code and captured output so the invoker sees the tool's own diagnostics.
"""

from __future__ import annotations

from typing import Optional

# sysexits.h
EX_NOINPUT = 66
EX_UNAVAILABLE = 69
EX_TEMPFAIL = 75
EX_INTERRUPTED = 130


def exit_status(returncode: int) -> int:
    """Shell-style status for a child's return code; signals map to 128 + signum."""

    if returncode < 0:
        return 128 - returncode
    return returncode


class ReleaseError(Exception):
    """Base class for failures surfaced to the invoker."""

    exit_code = 1

    def __init__(self, message: str, *, output: str = "", exit_code: Optional[int] = None) -> None:
        self.message = message
        self.output = output
        if exit_code:
            self.exit_code = exit_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.output:
            return f"{self.message}\n{self.output.rstrip()}"
        return self.message


class WorkspaceLocked(ReleaseError):
    """Another run holds exclusive access to the workspace or tag."""

    exit_code = EX_TEMPFAIL


class EnvironmentUnavailable(ReleaseError):
    """The pinned build environment image cannot be obtained."""

    exit_code = EX_UNAVAILABLE


class CompileFailure(ReleaseError):
    """The sandboxed build exited non-zero or was interrupted."""


class ArtifactMissing(ReleaseError):
    """The artifact to package does not exist or is empty."""

    exit_code = EX_NOINPUT


class PackagingFailure(ReleaseError):
    """The image build or tag promotion step failed."""


class ConfigError(ReleaseError):
    """The bundled release configuration is malformed."""
