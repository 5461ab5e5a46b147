"""Build workspace layout and housekeeping.

This module handles:
- Deriving the workspace directories from the base directory
- Cleaning a previous build
- Backing up previous artifacts and the persisted configuration
- Removing intermediate directories after a run
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".isoforge.lock"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Moved out of the output directory by a backup
BACKUP_PATTERNS = ("*.iso", "*.sha256", "*.md5", "*.sig", "*.txt", "*.json")


def timestamp(now: datetime | None = None) -> str:
    """Format a timestamp for backup and report names."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class Workspace:
    """Directories used by one build workspace.

    Attributes:
        base_dir: Root of the workspace.
    """

    base_dir: Path

    @property
    def build_dir(self) -> Path:
        """Assembler scratch directory."""
        return self.base_dir / "build"

    @property
    def out_dir(self) -> Path:
        return self.base_dir / "out"

    @property
    def tree_dir(self) -> Path:
        """Composed working tree handed to the assembler."""
        return self.base_dir / "releng"

    @property
    def backup_dir(self) -> Path:
        return self.base_dir / "backups"

    @property
    def cache_dir(self) -> Path:
        return self.base_dir / "cache"

    @property
    def config_dir(self) -> Path:
        return self.base_dir / "config"

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def lock_path(self) -> Path:
        return self.base_dir / LOCK_FILENAME

    def ensure(self) -> list[Path]:
        """Create every workspace directory.

        Returns:
            The directories, in creation order.
        """
        directories = [
            self.base_dir,
            self.build_dir,
            self.out_dir,
            self.backup_dir,
            self.cache_dir,
            self.config_dir,
            self.logs_dir,
            self.backup_dir / "iso",
            self.backup_dir / "configs",
            self.cache_dir / "packages",
            self.cache_dir / "repo",
        ]
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug("Created directory: %s", directory)
        return directories

    def clean_previous_build(self, clean_cache: bool = False) -> list[Path]:
        """Remove the previous scratch directory and working tree.

        Args:
            clean_cache: Also empty the package cache.

        Returns:
            Paths that were removed.
        """
        removed: list[Path] = []
        for directory in (self.build_dir, self.tree_dir):
            if directory.is_dir():
                shutil.rmtree(directory)
                removed.append(directory)
                logger.debug("Cleaned: %s", directory)

        packages = self.cache_dir / "packages"
        if clean_cache and packages.is_dir():
            for entry in packages.iterdir():
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed.append(entry)
            logger.debug("Cleaned package cache")

        logger.info("Previous build cleaned")
        return removed

    def backup_previous_artifacts(
        self,
        config_file: Path | None = None,
        now: datetime | None = None,
    ) -> Path | None:
        """Move the previous image and its sidecars into a timestamped backup.

        Args:
            config_file: Persisted configuration to copy alongside.
            now: Backup time (defaults to now).

        Returns:
            The backup directory, or None if there was no previous image.
        """
        if not any(self.out_dir.glob("*.iso")):
            logger.info("No previous ISO found to backup")
            return None

        stamp = timestamp(now)
        backup_subdir = self.backup_dir / "iso" / stamp
        backup_subdir.mkdir(parents=True, exist_ok=True)

        moved = 0
        for pattern in BACKUP_PATTERNS:
            for path in sorted(self.out_dir.glob(pattern)):
                if path.is_file():
                    shutil.move(str(path), str(backup_subdir / path.name))
                    moved += 1

        if config_file is not None and config_file.is_file():
            configs = self.backup_dir / "configs"
            configs.mkdir(parents=True, exist_ok=True)
            shutil.copy2(config_file, configs / f"config_{stamp}.conf")

        logger.info("Backup created at %s (%d files)", backup_subdir, moved)
        return backup_subdir

    def cleanup(
        self,
        keep_build_dir: bool = False,
        repo_dir: Path | None = None,
    ) -> list[Path]:
        """Remove intermediate directories after a run.

        Args:
            keep_build_dir: Keep the assembler scratch directory.
            repo_dir: System copy of the custom repository to remove.

        Returns:
            Paths that were removed.
        """
        targets: list[Path] = []
        if repo_dir is not None:
            targets.append(repo_dir)
        if not keep_build_dir:
            targets.append(self.build_dir)
        targets.append(self.tree_dir)

        removed: list[Path] = []
        for path in targets:
            if path.is_dir():
                shutil.rmtree(path)
                removed.append(path)
                logger.debug("Removed %s", path)
        logger.info("Cleanup completed")
        return removed


__all__ = [
    "BACKUP_PATTERNS",
    "LOCK_FILENAME",
    "Workspace",
    "timestamp",
]
