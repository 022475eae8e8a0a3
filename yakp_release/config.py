from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigError
from .models import BuildEnvironment, ImageSpec

DEFAULT_CONFIG_PATH = Path(__file__).with_name("release.yaml")


@dataclass(frozen=True)
class ReleaseConfig:
    """Constants governing a release run, loaded from the bundled file."""

    binary_name: str
    tag: str
    artifact_dir: str
    environment: BuildEnvironment
    image: ImageSpec

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ReleaseConfig":
        try:
            return cls(
                binary_name=data["binary_name"],
                tag=data["tag"],
                artifact_dir=data.get("artifact_dir", "dist"),
                environment=BuildEnvironment.from_dict(data["build_environment"]),
                image=ImageSpec.from_dict(data.get("image", {})),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ConfigError(f"Invalid release configuration: {exc!r}") from exc

    @classmethod
    def load(cls, path: Optional[str | Path] = None) -> "ReleaseConfig":
        path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
        raw_text = path.read_text()
        try:
            raw_data: Any = json.loads(raw_text)
        except json.JSONDecodeError:
            try:
                raw_data = yaml.safe_load(raw_text)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Cannot parse {path}: {exc}") from exc

        if not isinstance(raw_data, dict) or "build_environment" not in raw_data:
            raise ConfigError("Release configuration must contain a 'build_environment' mapping")
        return cls.from_dict(raw_data)

    def compiled_binary(self, workspace_root: Path) -> Path:
        """Where cargo leaves the release binary inside the workspace."""

        return (
            workspace_root
            / "target"
            / self.environment.target_triple
            / "release"
            / self.binary_name
        )

    def artifact_path(self, workspace_root: Path) -> Path:
        return workspace_root / self.artifact_dir / self.binary_name
