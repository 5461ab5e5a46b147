"""Custom local package repository.

The repository source lives in the site tree under
``airootfs/opt/<repo_name>``. It is copied to a fixed system location so the
assembler's pacman can reach it through a ``file://`` server line, and its
index is regenerated with ``repo-add``.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from isoforge.errors import ComposeError

logger = logging.getLogger(__name__)

PACKAGE_GLOB = "*.pkg.tar.*"
REPO_ADD = "repo-add"


def repository_source(source_dir: Path, repo_name: str) -> Path:
    """Return where the repository source is expected in the site tree."""
    return source_dir / "airootfs" / "opt" / repo_name


def find_packages(repo_dir: Path) -> list[Path]:
    """List package archives in a repository directory, skipping signatures."""
    return sorted(
        p for p in repo_dir.glob(PACKAGE_GLOB) if p.is_file() and p.suffix != ".sig"
    )


def build_repo_index(repo_dir: Path, repo_name: str, timeout: int = 600) -> bool:
    """Regenerate the repository index with repo-add.

    Args:
        repo_dir: Repository directory.
        repo_name: Repository name (index is ``<name>.db.tar.gz``).
        timeout: Command timeout in seconds.

    Returns:
        True if an index was built, False if it was skipped.

    Raises:
        ComposeError: If repo-add fails.
    """
    packages = find_packages(repo_dir)
    if not packages:
        logger.warning("No packages in %s, skipping index generation", repo_dir)
        return False

    repo_add = shutil.which(REPO_ADD)
    if repo_add is None:
        logger.warning("%s not found, repository index not regenerated", REPO_ADD)
        return False

    cmd = [repo_add, f"{repo_name}.db.tar.gz", *(p.name for p in packages)]
    logger.debug("Running: %s", " ".join(cmd))
    try:
        subprocess.run(
            cmd,
            cwd=repo_dir,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        raise ComposeError(
            f"repo-add failed with exit code {e.returncode}: {e.stderr.strip()}",
            code="repo_index_failed",
        ) from e
    except subprocess.TimeoutExpired as e:
        raise ComposeError(
            f"repo-add timed out after {timeout}s",
            code="repo_index_failed",
        ) from e
    except OSError as e:
        raise ComposeError(
            f"Failed to run repo-add: {e}",
            code="repo_index_failed",
        ) from e

    logger.info("Indexed %d packages in %s", len(packages), repo_dir)
    return True


def setup_custom_repository(
    source_dir: Path,
    system_dir: Path,
    repo_name: str,
    timeout: int = 600,
) -> Path | None:
    """Copy the custom repository to its system location and index it.

    Args:
        source_dir: Site customization tree.
        system_dir: Fixed system location to copy the repository to.
        repo_name: Repository name.
        timeout: repo-add timeout in seconds.

    Returns:
        The system location, or None if there is no repository source.

    Raises:
        ComposeError: If copying or indexing fails.
    """
    source = repository_source(source_dir, repo_name)
    if not source.is_dir():
        logger.warning("Custom repository source not found: %s", source)
        return None

    try:
        if system_dir.exists():
            shutil.rmtree(system_dir)
        system_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, system_dir, symlinks=True)
    except OSError as e:
        raise ComposeError(
            f"Failed to copy custom repository to {system_dir}: {e}",
            code="repo_copy_error",
        ) from e

    build_repo_index(system_dir, repo_name, timeout=timeout)
    logger.info("Custom repository set up at %s", system_dir)
    return system_dir


__all__ = [
    "build_repo_index",
    "find_packages",
    "repository_source",
    "setup_custom_repository",
]
