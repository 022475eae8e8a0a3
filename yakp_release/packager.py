from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ArtifactMissing, PackagingFailure, WorkspaceLocked, exit_status
from .models import ImageSpec, ReleaseImage
from .utils import CommandError, LockHeld, exclusive_lock, run_command, sha256_file

logger = logging.getLogger(__name__)

SOURCE_DATE_EPOCH = 0
VERSION_LABEL = "org.opencontainers.image.version"
DOCKER_ENV = {"DOCKER_BUILDKIT": "1", "SOURCE_DATE_EPOCH": str(SOURCE_DATE_EPOCH)}


def tag_lock_path(tag: str) -> Path:
    digest = hashlib.sha256(tag.encode("utf-8")).hexdigest()[:16]
    return Path(tempfile.gettempdir()) / f"yakp-release-tag-{digest}.lock"


def stage_context(artifact: Path, image_spec: ImageSpec, context_dir: Path, version: Optional[str] = None) -> Path:
    """Populate ``context_dir`` with the artifact and its Dockerfile.

    File modes and mtimes are normalised so the context is identical for
    identical artifact bytes.
    """

    staged = context_dir / artifact.name
    shutil.copyfile(artifact, staged)
    os.chmod(staged, 0o755)
    os.utime(staged, (SOURCE_DATE_EPOCH, SOURCE_DATE_EPOCH))

    extra_labels: Dict[str, str] = {}
    if version:
        extra_labels[VERSION_LABEL] = version
    dockerfile = context_dir / "Dockerfile"
    dockerfile.write_text(image_spec.render(artifact.name, extra_labels))
    os.utime(dockerfile, (SOURCE_DATE_EPOCH, SOURCE_DATE_EPOCH))
    return dockerfile


class ImagePackager:
    """Wraps a finished artifact in the runtime image and moves the tag to it."""

    def package(
        self,
        artifact: str | Path,
        image_spec: ImageSpec,
        tag: str,
        *,
        version: Optional[str] = None,
    ) -> ReleaseImage:
        artifact = Path(artifact)
        if not artifact.is_file():
            raise ArtifactMissing(f"Artifact {artifact} does not exist")
        if artifact.stat().st_size == 0:
            raise ArtifactMissing(f"Artifact {artifact} is empty")

        try:
            with exclusive_lock(tag_lock_path(tag)):
                return self._build_and_tag(artifact, image_spec, tag, version)
        except LockHeld as exc:
            raise WorkspaceLocked(f"Tag {tag} is being packaged by pid {exc.owner}") from exc

    def _build_and_tag(self, artifact: Path, image_spec: ImageSpec, tag: str, version: Optional[str]) -> ReleaseImage:
        with tempfile.TemporaryDirectory(prefix="yakp-image-") as scratch:
            scratch_dir = Path(scratch)
            context_dir = scratch_dir / "context"
            context_dir.mkdir()
            try:
                stage_context(artifact, image_spec, context_dir, version)
            except FileNotFoundError as exc:
                raise ArtifactMissing(f"Artifact {artifact} disappeared before packaging") from exc
            artifact_sha256 = sha256_file(context_dir / artifact.name)
            iidfile = scratch_dir / "image.id"

            logger.info("building image from %s (sha256=%s)", artifact, artifact_sha256)
            build_command = [
                "docker",
                "build",
                "--iidfile",
                str(iidfile),
                "--build-arg",
                f"SOURCE_DATE_EPOCH={SOURCE_DATE_EPOCH}",
                str(context_dir),
            ]
            self._docker(build_command, "Image build failed")
            image_id = iidfile.read_text().strip() if iidfile.exists() else ""
            if not image_id:
                raise PackagingFailure("Image build reported no image id")

        # the tag only moves once the build has fully succeeded
        self._docker(["docker", "tag", image_id, tag], f"Cannot tag {image_id} as {tag}")
        logger.info("tagged %s as %s", image_id, tag)
        return ReleaseImage(tag=tag, image_id=image_id, artifact_sha256=artifact_sha256)

    def _docker(self, command: List[str], message: str) -> None:
        try:
            run_command(command, env=DOCKER_ENV)
        except FileNotFoundError as exc:
            raise PackagingFailure("docker executable not found") from exc
        except CommandError as exc:
            raise PackagingFailure(
                message,
                output="\n".join(part for part in (exc.stdout, exc.stderr) if part),
                exit_code=exit_status(exc.returncode),
            ) from exc
