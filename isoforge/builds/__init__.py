"""Build orchestration.

This package handles:
- Running the assembler and host commands with logged output
- The workspace layout and housekeeping
- Sequencing stages with rescue, cleanup and locking guarantees
- The ordered build pipeline
"""

from isoforge.builds.pipeline import BuildPipeline
from isoforge.builds.sequencer import PipelineResult, Stage, StageSequencer
from isoforge.builds.workspace import Workspace

__all__ = [
    "BuildPipeline",
    "PipelineResult",
    "Stage",
    "StageSequencer",
    "Workspace",
]
