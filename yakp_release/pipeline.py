from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

from .config import ReleaseConfig
from .models import ReleaseImage, StageResult
from .orchestrator import BuildOrchestrator
from .packager import ImagePackager
from .workspace import Workspace

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    IDLE = auto()
    CLEANING = auto()
    COMPILING = auto()
    PACKAGING = auto()
    DONE = auto()
    FAILED = auto()

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED)


_TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.CLEANING, PipelineState.PACKAGING}),
    PipelineState.CLEANING: frozenset({PipelineState.COMPILING, PipelineState.FAILED}),
    PipelineState.COMPILING: frozenset({PipelineState.PACKAGING, PipelineState.FAILED}),
    PipelineState.PACKAGING: frozenset({PipelineState.DONE, PipelineState.FAILED}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


class PipelineStateError(RuntimeError):
    """Raised on a transition the state machine does not allow."""


@dataclass
class PipelineRun:
    """Outcome of one pipeline invocation."""

    state: PipelineState
    history: List[PipelineState]
    stages: List[StageResult] = field(default_factory=list)
    image: Optional[ReleaseImage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.name.lower(),
            "history": [state.name.lower() for state in self.history],
            "stages": [stage.to_dict() for stage in self.stages],
            "image": self.image.to_dict() if self.image else None,
        }


class ReleasePipeline:
    """Single-use state machine sequencing clean, compile and package."""

    def __init__(
        self,
        workspace: Workspace,
        config: ReleaseConfig,
        *,
        orchestrator: Optional[BuildOrchestrator] = None,
        packager: Optional[ImagePackager] = None,
    ) -> None:
        self.workspace = workspace
        self.config = config
        self.orchestrator = orchestrator or BuildOrchestrator(workspace, config)
        self.packager = packager or ImagePackager()
        self._state = PipelineState.IDLE
        self._history: List[PipelineState] = [PipelineState.IDLE]
        self._stages: List[StageResult] = []
        self._image: Optional[ReleaseImage] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    def run_build(self) -> PipelineRun:
        self._transition(PipelineState.CLEANING)
        try:
            with self.workspace.lock():
                self._stages.append(self.orchestrator.clean())

                self._transition(PipelineState.COMPILING)
                artifact = self.orchestrator.compile(self.config.environment)
                self._stages.append(StageResult("compile", "completed", artifact.to_dict()))

                self._transition(PipelineState.PACKAGING)
                self._package(artifact.path, artifact.version)
        except BaseException:
            self._fail()
            raise
        self._transition(PipelineState.DONE)
        return self.result()

    def run_package_only(self) -> PipelineRun:
        self._transition(PipelineState.PACKAGING)
        try:
            with self.workspace.lock():
                self._package(self.config.artifact_path(self.workspace.root), self.workspace.version())
        except BaseException:
            self._fail()
            raise
        self._transition(PipelineState.DONE)
        return self.result()

    def result(self) -> PipelineRun:
        return PipelineRun(
            state=self._state,
            history=list(self._history),
            stages=list(self._stages),
            image=self._image,
        )

    def _package(self, artifact: Path, version: Optional[str]) -> None:
        image = self.packager.package(artifact, self.config.image, self.config.tag, version=version)
        self._image = image
        self._stages.append(StageResult("package", "completed", image.to_dict()))

    def _transition(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise PipelineStateError(f"Cannot move from {self._state.name} to {target.name}")
        logger.info("pipeline %s -> %s", self._state.name.lower(), target.name.lower())
        self._state = target
        self._history.append(target)

    def _fail(self) -> None:
        if not self._state.terminal:
            self._transition(PipelineState.FAILED)
