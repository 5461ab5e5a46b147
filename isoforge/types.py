"""Shared type definitions for isoforge.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path


class StageStatus(str, Enum):
    """Status of a single pipeline stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"


class PipelineState(str, Enum):
    """State of the stage sequencer."""

    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"
    RESCUE_SAVED = "rescue_saved"
    INTERRUPTED = "interrupted"
    SUCCEEDED = "succeeded"


class ErrorKind(str, Enum):
    """Classification of a pipeline error."""

    CONFIG = "config"
    COMPOSE = "compose"
    PROVISION = "provision"
    STAGE = "stage"
    FINALIZE = "finalize"
    DEPENDENCY = "dependency"
    LOCKED = "locked"
    INTERRUPTED = "interrupted"
    UNEXPECTED = "unexpected"


class SigningStatus(str, Enum):
    """Outcome of the signing step."""

    SIGNED = "signed"
    UNSIGNED = "unsigned"
    NO_KEY = "no_key"
    FAILED = "failed"


class ExitCode(IntEnum):
    """Process exit codes returned by the CLI."""

    SUCCESS = 0
    STAGE_FAILURE = 1
    CONFIG_ERROR = 2
    DEPENDENCY_ERROR = 3
    WORKSPACE_LOCKED = 4
    INTERRUPTED = 130


@dataclass
class StageResult:
    """Outcome of one pipeline stage."""

    stage: str
    status: StageStatus
    error_kind: ErrorKind | None = None
    message: str | None = None
    exit_code: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        """Whether the stage allows the pipeline to continue."""
        return self.status in (StageStatus.SUCCEEDED, StageStatus.SKIPPED)

    @classmethod
    def failure(
        cls,
        stage: str,
        message: str,
        error_kind: ErrorKind = ErrorKind.STAGE,
        exit_code: int | None = None,
    ) -> "StageResult":
        """Build a failed result."""
        return cls(
            stage=stage,
            status=StageStatus.FAILED,
            error_kind=error_kind,
            message=message,
            exit_code=exit_code,
        )


@dataclass
class BuildArtifact:
    """The produced image plus derived metadata."""

    path: Path
    size_bytes: int
    sha256: str | None = None
    md5: str | None = None
    sha256_path: Path | None = None
    md5_path: Path | None = None
    signature_path: Path | None = None
    signing_status: SigningStatus = SigningStatus.UNSIGNED
    report_path: Path | None = None
    manifest_path: Path | None = None
    package_list_path: Path | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def filename(self) -> str:
        """Name of the image file."""
        return self.path.name


__all__ = [
    "BuildArtifact",
    "ErrorKind",
    "ExitCode",
    "PipelineState",
    "SigningStatus",
    "StageResult",
    "StageStatus",
]
