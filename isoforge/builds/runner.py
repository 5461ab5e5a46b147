"""Command runner for the image assembler and host tools.

This module handles:
- Composing the mkarchiso command from the build configuration
- Executing commands with stdout/stderr appended to the build log
- Enforcing command timeouts
- Checking that the host tools the pipeline needs are installed
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from isoforge.errors import StageFailure

if TYPE_CHECKING:
    from isoforge.buildconfig.schema import BuildConfig

logger = logging.getLogger(__name__)

ASSEMBLER = "mkarchiso"

# Host tool -> package that provides it
REQUIRED_TOOLS: dict[str, str] = {
    "mkarchiso": "archiso",
    "openssl": "openssl",
    "mksquashfs": "squashfs-tools",
    "mkfs.fat": "dosfstools",
    "xorriso": "libisoburn",
}

# Used when present; their absence only produces warnings
OPTIONAL_TOOLS: dict[str, str] = {
    "repo-add": "pacman",
    "gpg": "gnupg",
    "isoinfo": "cdrtools",
}

PREREQUISITE_PACKAGES = ("archiso", "mkinitcpio-archiso")


@dataclass
class CommandResult:
    """Result of one logged command.

    Attributes:
        command: The command that was executed, shell-quoted.
        exit_code: Process exit code.
        log_path: Log file the output was appended to.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class AssemblyResult:
    """Result of an assembler run.

    Attributes:
        success: Whether the assembler succeeded.
        exit_code: Process exit code.
        out_dir: Directory the image was written to.
        work_dir: Assembler scratch directory.
        log_path: Path to the build log file.
        started_at: Start time.
        finished_at: Finish time.
        command: The command that was executed.
        error_message: Error message if the assembler failed.
    """

    success: bool
    exit_code: int
    out_dir: Path
    work_dir: Path
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None


def compose_mkarchiso_command(
    config: BuildConfig,
    work_dir: Path,
    out_dir: Path,
    profile_dir: Path,
) -> list[str]:
    """Compose the assembler command.

    Args:
        config: Resolved build configuration.
        work_dir: Assembler scratch directory.
        out_dir: Directory for the output image.
        profile_dir: Composed working tree.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [ASSEMBLER]
    if config.verbose:
        cmd.append("-v")
    cmd.extend(["-L", str(config.compression_level)])
    cmd.extend(["-w", str(work_dir), "-o", str(out_dir), str(profile_dir)])
    return cmd


def assembler_environment(config: BuildConfig) -> dict[str, str]:
    """Environment overrides passed to the assembler."""
    return {"MAKEFLAGS": f"-j{config.parallel_jobs}"}


def run_logged(
    cmd: list[str],
    log_path: Path,
    cwd: Path | None = None,
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
) -> CommandResult:
    """Run a command with its output appended to a log file.

    Args:
        cmd: Command to run.
        log_path: Log file to append to.
        cwd: Working directory.
        timeout: Timeout in seconds (None = no timeout).
        env_override: Environment variable overrides.

    Returns:
        CommandResult; a non-zero exit is not an error here.

    Raises:
        StageFailure: If the command cannot be started or times out.
    """
    cmd_str = shlex.join(cmd)
    logger.info("Executing: %s", cmd_str)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)
    try:
        with log_path.open("a") as log_file:
            log_file.write(f"\n# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            if cwd is not None:
                log_file.write(f"# CWD: {cwd}\n")
            log_file.write("# " + "=" * 70 + "\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=cwd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )
    except subprocess.TimeoutExpired as e:
        with log_path.open("a") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise StageFailure(
            f"{cmd[0]} timed out after {timeout} seconds",
            exit_code=-1,
            code="command_timeout",
        ) from e
    except OSError as e:
        raise StageFailure(
            f"Failed to execute {cmd[0]}: {e}",
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)
    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {result.returncode}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return CommandResult(
        command=cmd_str,
        exit_code=result.returncode,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
    )


def run_assembler(
    config: BuildConfig,
    profile_dir: Path,
    work_dir: Path,
    out_dir: Path,
    log_path: Path,
    timeout: int | None = None,
) -> AssemblyResult:
    """Run the assembler on the composed tree.

    Args:
        config: Resolved build configuration.
        profile_dir: Composed working tree.
        work_dir: Assembler scratch directory.
        out_dir: Directory for the output image.
        log_path: Build log file.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        AssemblyResult with execution details.

    Raises:
        StageFailure: If the assembler cannot be started or times out.
    """
    work_dir.mkdir(parents=True, exist_ok=True)
    out_dir.mkdir(parents=True, exist_ok=True)

    cmd = compose_mkarchiso_command(config, work_dir, out_dir, profile_dir)
    logger.info("Working directory: %s", work_dir)
    logger.info("Output directory: %s", out_dir)

    result = run_logged(
        cmd,
        log_path,
        timeout=timeout,
        env_override=assembler_environment(config),
    )

    error_message: str | None = None
    if not result.success:
        error_message = f"Assembler failed with exit code {result.exit_code}"
        logger.error("%s. See log: %s", error_message, log_path)

    return AssemblyResult(
        success=result.success,
        exit_code=result.exit_code,
        out_dir=out_dir,
        work_dir=work_dir,
        log_path=log_path,
        started_at=result.started_at,
        finished_at=result.finished_at,
        command=result.command,
        error_message=error_message,
    )


def install_prerequisites(log_path: Path, timeout: int | None = None) -> CommandResult:
    """Install the assembler packages with pacman.

    Raises:
        StageFailure: If pacman fails.
    """
    cmd = ["pacman", "-S", "--needed", "--noconfirm", *PREREQUISITE_PACKAGES]
    result = run_logged(cmd, log_path, timeout=timeout)
    if not result.success:
        raise StageFailure(
            f"pacman failed with exit code {result.exit_code}",
            exit_code=result.exit_code,
            code="prerequisites_failed",
        )
    return result


def check_dependencies(
    tools: dict[str, str] | None = None,
) -> dict[str, str]:
    """Find required host tools that are not installed.

    Args:
        tools: Tool -> package map to check (defaults to REQUIRED_TOOLS).

    Returns:
        Missing tools mapped to the packages that provide them.
    """
    tools = REQUIRED_TOOLS if tools is None else tools
    missing = {tool: pkg for tool, pkg in tools.items() if shutil.which(tool) is None}
    if missing:
        logger.warning("Missing tools: %s", ", ".join(sorted(missing)))
    for tool, pkg in OPTIONAL_TOOLS.items():
        if tools is REQUIRED_TOOLS and shutil.which(tool) is None:
            logger.debug("Optional tool %s (%s) not installed", tool, pkg)
    return missing


__all__ = [
    "PREREQUISITE_PACKAGES",
    "REQUIRED_TOOLS",
    "AssemblyResult",
    "CommandResult",
    "check_dependencies",
    "compose_mkarchiso_command",
    "install_prerequisites",
    "run_assembler",
    "run_logged",
]
