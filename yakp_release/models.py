from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class BuildEnvironment:
    """Pinned toolchain image and how the workspace is mounted into it."""

    image: str
    mount_path: str = "/home/rust/src"
    command: Tuple[str, ...] = ("cargo", "build", "--release")
    target_triple: str = "x86_64-unknown-linux-musl"
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BuildEnvironment":
        return cls(
            image=data["image"],
            mount_path=data.get("mount_path", "/home/rust/src"),
            command=tuple(data.get("command", ("cargo", "build", "--release"))),
            target_triple=data.get("target_triple", "x86_64-unknown-linux-musl"),
            env={str(k): str(v) for k, v in data.get("env", {}).items()},
        )


@dataclass(frozen=True)
class ImageSpec:
    """Declarative description of the runtime image wrapping the artifact."""

    base: str = "scratch"
    binary_path: str = "/bin/yakp"
    entrypoint: Tuple[str, ...] = ("/bin/yakp",)
    labels: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entrypoint", tuple(self.entrypoint))
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImageSpec":
        binary_path = data.get("binary_path", "/bin/yakp")
        return cls(
            base=data.get("base", "scratch"),
            binary_path=binary_path,
            entrypoint=tuple(data.get("entrypoint", (binary_path,))),
            labels={str(k): str(v) for k, v in data.get("labels", {}).items()},
        )

    def render(self, source_name: str, extra_labels: Optional[Mapping[str, str]] = None) -> str:
        """Return Dockerfile text; identical inputs render identical text."""

        labels = dict(self.labels)
        labels.update(extra_labels or {})
        lines = [f"FROM {self.base}", f"COPY {source_name} {self.binary_path}"]
        for key in sorted(labels):
            lines.append(f"LABEL {json.dumps(key)}={json.dumps(labels[key])}")
        lines.append(f"ENTRYPOINT {json.dumps(list(self.entrypoint))}")
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class Artifact:
    """The compiled executable handed from the orchestrator to the packager."""

    path: Path
    sha256: str
    size: int
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "sha256": self.sha256,
            "size": self.size,
            "version": self.version,
        }


@dataclass(frozen=True)
class ReleaseImage:
    tag: str
    image_id: str
    artifact_sha256: str

    def to_dict(self) -> Dict[str, Any]:
        return {"tag": self.tag, "image_id": self.image_id, "artifact_sha256": self.artifact_sha256}


@dataclass
class StageResult:
    """Summary emitted by a pipeline stage."""

    name: str
    status: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"stage": self.name, "status": self.status, "details": self.details}
