"""Stage sequencing for a pipeline run.

This module handles:
- Running named stages strictly in order, stopping at the first failure
- Classifying stage failures from the raised error
- Saving a rescue snapshot of the working tree on failure
- Converting SIGTERM and Ctrl-C into a controlled interrupted outcome
- Guaranteeing cleanup and lock release on every exit path
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import shutil
import signal
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from isoforge.builds.workspace import timestamp
from isoforge.errors import BuildError, Interrupted, WorkspaceLockedError
from isoforge.types import (
    ErrorKind,
    ExitCode,
    PipelineState,
    StageResult,
    StageStatus,
)

logger = logging.getLogger(__name__)

StageAction = Callable[[], "StageResult | None"]


@dataclass
class Stage:
    """One named unit of pipeline work.

    The action returns None (success) or a StageResult, or raises a
    BuildError.
    """

    name: str
    action: StageAction
    enabled: bool = True


@dataclass
class PipelineResult:
    """Outcome of a sequencer run.

    Attributes:
        state: Final pipeline state.
        results: Per-stage results, in execution order.
        history: Every state the pipeline passed through.
        failed_stage: Name of the failing or interrupted stage.
        error_kind: Classification of the failure.
        message: Failure message.
        exit_code: Exit status of the failing command, when there was one.
        rescue_path: Rescue snapshot location, if one was saved.
        error: The error raised by the failing stage, if any.
    """

    state: PipelineState
    results: list[StageResult] = field(default_factory=list)
    history: list[PipelineState] = field(default_factory=list)
    failed_stage: str | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    exit_code: int | None = None
    rescue_path: Path | None = None
    error: BuildError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.SUCCEEDED

    @property
    def exit_status(self) -> ExitCode:
        """Process exit code for this outcome."""
        if self.state == PipelineState.SUCCEEDED:
            return ExitCode.SUCCESS
        if self.state == PipelineState.INTERRUPTED:
            return ExitCode.INTERRUPTED
        if self.error is not None:
            return self.error.exit_code
        return ExitCode.STAGE_FAILURE


@contextlib.contextmanager
def workspace_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock for the duration of a run.

    Args:
        lock_path: Lock file.

    Yields:
        None when the lock is held.

    Raises:
        WorkspaceLockedError: If another process holds the lock.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise WorkspaceLockedError(str(lock_path)) from None
        lock_acquired = True
        logger.debug("Workspace lock acquired: %s", lock_path)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Workspace lock released: %s", lock_path)
        os.close(fd)


def save_rescue_snapshot(
    work_tree: Path,
    rescue_root: Path,
    now: datetime | None = None,
) -> Path | None:
    """Copy the working tree aside for post-mortem inspection.

    Returns:
        The snapshot location, or None if there was nothing to save or the
        copy failed.
    """
    if not work_tree.is_dir():
        return None
    rescue_dir = rescue_root / f"rescue_{timestamp(now)}"
    try:
        rescue_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(work_tree, rescue_dir / work_tree.name, symlinks=True)
    except OSError as e:
        logger.error("Failed to save rescue snapshot to %s: %s", rescue_dir, e)
        return None
    logger.info("Rescue copy saved to: %s", rescue_dir)
    return rescue_dir


class StageSequencer:
    """Runs stages in order with rescue, cleanup and locking guarantees."""

    def __init__(
        self,
        stages: list[Stage],
        work_tree: Path,
        rescue_root: Path,
        cleanup: Callable[[], Any] | None = None,
        lock_path: Path | None = None,
        on_stage: Callable[[int, int, Stage], None] | None = None,
    ) -> None:
        """Initialize the sequencer.

        Args:
            stages: Stages in execution order.
            work_tree: Working tree to snapshot on failure.
            rescue_root: Directory rescue snapshots are written under.
            cleanup: Called exactly once when the run ends, however it ends.
            lock_path: Advisory lock file; no locking when None.
            on_stage: Called before each enabled stage with its 1-based
                position, the stage count and the stage.
        """
        self.stages = stages
        self.work_tree = work_tree
        self.rescue_root = rescue_root
        self.cleanup = cleanup
        self.lock_path = lock_path
        self.on_stage = on_stage
        self.state = PipelineState.PENDING
        self.history: list[PipelineState] = [PipelineState.PENDING]
        self.results: list[StageResult] = []
        self._current: str | None = None

    def _transition(self, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _run_stage(self, stage: Stage) -> tuple[StageResult, BuildError | None]:
        started_at = datetime.now(timezone.utc)
        error: BuildError | None = None
        try:
            outcome = stage.action()
        except Interrupted:
            raise
        except BuildError as e:
            error = e
            outcome = StageResult.failure(
                stage.name,
                e.message,
                error_kind=e.kind,
                exit_code=getattr(e, "command_exit_code", None),
            )
        except Exception as e:
            logger.exception("Unexpected error in stage %s", stage.name)
            error = BuildError(f"Unexpected error: {e}", code="unexpected_error")
            outcome = StageResult.failure(
                stage.name, error.message, error_kind=ErrorKind.UNEXPECTED
            )

        result = outcome or StageResult(stage=stage.name, status=StageStatus.SUCCEEDED)
        result.stage = stage.name
        result.started_at = result.started_at or started_at
        result.finished_at = result.finished_at or datetime.now(timezone.utc)
        return result, error

    def _handle_sigterm(self, signum: int, frame: Any) -> None:
        raise Interrupted("Build terminated by signal")

    def _install_signal_handler(self) -> Any:
        if threading.current_thread() is not threading.main_thread():
            return None
        return signal.signal(signal.SIGTERM, self._handle_sigterm)

    def _restore_signal_handler(self, previous: Any) -> None:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    def _run_cleanup(self) -> Interrupted | None:
        """Run the cleanup hook; return the interruption that stopped it, if any."""
        if self.cleanup is None:
            return None
        try:
            self.cleanup()
        except (KeyboardInterrupt, Interrupted) as e:
            logger.error("Cleanup interrupted before it completed")
            return e if isinstance(e, Interrupted) else Interrupted()
        except Exception:
            logger.exception("Cleanup failed")
        return None

    def _mark_interrupted(
        self, result: PipelineResult, error: Interrupted, stage: str | None
    ) -> None:
        message = error.message
        logger.error("%s", message)
        self.results.append(
            StageResult(
                stage=stage or "",
                status=StageStatus.INTERRUPTED,
                error_kind=ErrorKind.INTERRUPTED,
                message=message,
            )
        )
        self._transition(PipelineState.INTERRUPTED)
        result.failed_stage = stage
        result.error_kind = ErrorKind.INTERRUPTED
        result.message = message
        result.error = error

    def _execute(self) -> PipelineResult:
        result = PipelineResult(state=self.state, history=self.history)
        enabled = [stage for stage in self.stages if stage.enabled]
        position = 0
        self._transition(PipelineState.RUNNING)
        try:
            for stage in self.stages:
                if not stage.enabled:
                    self.results.append(
                        StageResult(stage=stage.name, status=StageStatus.SKIPPED)
                    )
                    logger.debug("Skipping stage: %s", stage.name)
                    continue

                position += 1
                self._current = stage.name
                if self.on_stage is not None:
                    self.on_stage(position, len(enabled), stage)
                logger.info("Step %d/%d: %s", position, len(enabled), stage.name)

                stage_result, error = self._run_stage(stage)
                self.results.append(stage_result)
                if not stage_result.ok:
                    logger.error(
                        "Stage %s failed: %s", stage.name, stage_result.message
                    )
                    self._transition(PipelineState.FAILED)
                    result.failed_stage = stage.name
                    result.error_kind = stage_result.error_kind
                    result.message = stage_result.message
                    result.exit_code = stage_result.exit_code
                    result.error = error
                    result.rescue_path = save_rescue_snapshot(
                        self.work_tree, self.rescue_root
                    )
                    if result.rescue_path is not None:
                        self._transition(PipelineState.RESCUE_SAVED)
                    break
            else:
                self._transition(PipelineState.SUCCEEDED)
        except (KeyboardInterrupt, Interrupted) as e:
            self._mark_interrupted(
                result,
                e if isinstance(e, Interrupted) else Interrupted(),
                self._current,
            )
        finally:
            cleanup_interrupted = self._run_cleanup()

        # A failure already carries the primary outcome
        if cleanup_interrupted is not None and self.state == PipelineState.SUCCEEDED:
            self._mark_interrupted(result, cleanup_interrupted, "cleanup")

        result.state = self.state
        result.results = self.results
        return result

    def run(self) -> PipelineResult:
        """Run every stage.

        Returns:
            PipelineResult describing the outcome.

        Raises:
            WorkspaceLockedError: If another run holds the workspace lock.
        """
        lock = (
            workspace_lock(self.lock_path)
            if self.lock_path is not None
            else contextlib.nullcontext()
        )
        with lock:
            previous = self._install_signal_handler()
            try:
                return self._execute()
            finally:
                self._restore_signal_handler(previous)


__all__ = [
    "PipelineResult",
    "Stage",
    "StageSequencer",
    "save_rescue_snapshot",
    "workspace_lock",
]
