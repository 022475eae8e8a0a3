"""Hermetic build and image packaging for the yakp release binary."""

from .config import ReleaseConfig
from .orchestrator import BuildOrchestrator
from .packager import ImagePackager
from .pipeline import PipelineState, ReleasePipeline
from .workspace import Workspace

__all__ = [
    "BuildOrchestrator",
    "ImagePackager",
    "PipelineState",
    "ReleaseConfig",
    "ReleasePipeline",
    "Workspace",
]
