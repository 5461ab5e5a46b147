"""Overlay composition of the working root-filesystem tree.

This module handles:
- Copying the base template verbatim into a fresh working directory
- Layering a named profile (package list, pacman.conf, airootfs fragment)
- Removing the fixed denylist of template defaults
- Installing and branding the BIOS/EFI/syslinux boot loader configs
- Layering the site airootfs customizations
- Computing a deterministic hash of a composed tree

Merge rule for every layer: last writer wins on a file path, directories
are unioned. Symlinks are copied as symlinks.
"""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from isoforge.errors import ComposeError

if TYPE_CHECKING:
    from isoforge.buildconfig.schema import BuildConfig

logger = logging.getLogger(__name__)

PROFILES_DIRNAME = "profiles"
AIROOTFS_DIRNAME = "airootfs"
PACMAN_CONF_NAME = "pacman.conf"

# Deleted from the working tree after the profile overlay, unconditionally
DENYLIST = (
    "airootfs/etc/motd",
    "airootfs/etc/mkinitcpio.d/linux.preset",
    "airootfs/etc/ssh/sshd_config.d/10-archiso.conf",
    "airootfs/etc/mkinitcpio.conf.d",
    "grub",
    "efiboot",
    "syslinux",
)

# BIOS (syslinux), EFI (systemd-boot) and GRUB boot paths
BOOTLOADER_DIRS = ("grub", "efiboot", "syslinux")
BOOTLOADER_CONFIG_SUFFIXES = (".cfg", ".conf")

GENERIC_PRODUCT_NAME = "archiso"
GENERIC_DISTRIBUTION_NAME = "Arch Linux"
# Whole word only: kernel parameters like archisobasedir must survive
_PRODUCT_NAME_RE = re.compile(rf"\b{GENERIC_PRODUCT_NAME}\b")

# Top-level airootfs directories taken from the site customization tree
SITE_OVERLAY_DIRS = ("etc", "opt", "usr", "root")


@dataclass
class OverlayTree:
    """A working root-filesystem tree owned by one pipeline run.

    Attributes:
        root: Working directory (the assembler profile directory).
        profile: Name of the applied profile, or None if none was applied.
        warnings: Non-fatal problems recorded during composition.
    """

    root: Path
    profile: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def airootfs(self) -> Path:
        return self.root / AIROOTFS_DIRNAME

    @property
    def pacman_conf(self) -> Path:
        return self.root / PACMAN_CONF_NAME

    def packages_file(self, architecture: str) -> Path:
        return self.root / f"packages.{architecture}"

    def warn(self, message: str) -> None:
        """Record and log a non-fatal composition problem."""
        logger.warning(message)
        self.warnings.append(message)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def copy_entry(source: Path, dest: Path) -> None:
    """Copy one file or symlink, replacing whatever is at ``dest``.

    Args:
        source: Source file or symlink.
        dest: Destination path.

    Raises:
        ComposeError: If copying fails.
    """
    try:
        if dest.is_symlink() or (dest.exists() and dest.is_dir()):
            _remove_path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        if source.is_symlink():
            if dest.exists():
                dest.unlink()
            dest.symlink_to(source.readlink())
        else:
            shutil.copy2(source, dest)
    except OSError as e:
        raise ComposeError(
            f"Failed to copy {source} -> {dest}: {e}",
            code="file_copy_error",
        ) from e


def merge_tree(source_dir: Path, dest_dir: Path) -> int:
    """Merge a directory tree onto another.

    A source file replaces a destination entry at the same path; source
    directories are unioned with existing destination directories.

    Args:
        source_dir: Layer to apply.
        dest_dir: Tree being composed.

    Returns:
        Number of files and symlinks copied.

    Raises:
        ComposeError: If merging fails.
    """
    copied = 0
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        for item in sorted(source_dir.rglob("*")):
            rel_path = item.relative_to(source_dir)
            dest_path = dest_dir / rel_path

            if item.is_dir() and not item.is_symlink():
                if dest_path.is_symlink() or (
                    dest_path.exists() and not dest_path.is_dir()
                ):
                    _remove_path(dest_path)
                dest_path.mkdir(parents=True, exist_ok=True)
            else:
                copy_entry(item, dest_path)
                copied += 1
    except OSError as e:
        raise ComposeError(
            f"Failed to merge {source_dir} into {dest_dir}: {e}",
            code="merge_error",
        ) from e

    logger.debug("Merged %d entries from %s into %s", copied, source_dir, dest_dir)
    return copied


def copy_base_template(template_dir: Path, work_dir: Path) -> OverlayTree:
    """Copy the base template verbatim into a fresh working directory.

    Args:
        template_dir: Base template tree.
        work_dir: Working directory; replaced if it exists.

    Returns:
        OverlayTree rooted at ``work_dir``.

    Raises:
        ComposeError: If the template is missing or copying fails.
    """
    if not template_dir.is_dir():
        raise ComposeError(
            f"Base template not found: {template_dir}",
            code="template_not_found",
        )

    try:
        if work_dir.exists():
            shutil.rmtree(work_dir)
        work_dir.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(template_dir, work_dir, symlinks=True)
    except OSError as e:
        raise ComposeError(
            f"Failed to copy base template {template_dir}: {e}",
            code="template_copy_error",
        ) from e

    logger.info("Copied base template %s -> %s", template_dir, work_dir)
    return OverlayTree(root=work_dir)


def apply_profile(
    tree: OverlayTree,
    profile_dir: Path,
    architecture: str,
) -> bool:
    """Overlay a named profile onto the working tree.

    Args:
        tree: Tree being composed.
        profile_dir: Profile directory (``<source>/profiles/<name>``).
        architecture: Selects the ``packages.<arch>`` list.

    Returns:
        True if the profile was applied, False if it does not exist (a
        warning is recorded on the tree).
    """
    if not profile_dir.is_dir():
        tree.warn(
            f"Profile directory not found: {profile_dir}; using the base template"
        )
        return False

    packages = profile_dir / f"packages.{architecture}"
    if packages.is_file():
        copy_entry(packages, tree.packages_file(architecture))
        logger.debug("Applied profile package list %s", packages.name)

    pacman_conf = profile_dir / PACMAN_CONF_NAME
    if pacman_conf.is_file():
        copy_entry(pacman_conf, tree.pacman_conf)
        logger.debug("Applied profile pacman.conf")

    airootfs = profile_dir / AIROOTFS_DIRNAME
    if airootfs.is_dir():
        merge_tree(airootfs, tree.airootfs)
        logger.debug("Applied profile airootfs files")

    tree.profile = profile_dir.name
    logger.info("Applied build profile: %s", profile_dir.name)
    return True


def remove_denylisted(root: Path) -> list[str]:
    """Delete the fixed denylist of template defaults.

    Args:
        root: Working tree root.

    Returns:
        Relative paths that were removed.
    """
    removed: list[str] = []
    for rel_path in DENYLIST:
        path = root / rel_path
        if path.exists() or path.is_symlink():
            try:
                _remove_path(path)
            except OSError as e:
                raise ComposeError(
                    f"Failed to remove {path}: {e}",
                    code="denylist_error",
                ) from e
            removed.append(rel_path)
            logger.debug("Removed default: %s", rel_path)
    return removed


def brand_boot_text(text: str, hostname: str, brand_name: str) -> str:
    """Replace generic product and distribution names in boot menu text.

    Args:
        text: Boot loader config content.
        hostname: Replaces the generic product name.
        brand_name: Replaces the generic distribution name.

    Returns:
        Patched text.
    """
    text = _PRODUCT_NAME_RE.sub(hostname, text)
    return text.replace(GENERIC_DISTRIBUTION_NAME, brand_name)


def install_bootloaders(
    tree: OverlayTree,
    source_dir: Path,
    hostname: str,
    brand_name: str,
) -> list[Path]:
    """Copy the boot loader directories in fresh and brand their configs.

    Args:
        tree: Tree being composed.
        source_dir: Site customization tree holding grub/efiboot/syslinux.
        hostname: Configured hostname.
        brand_name: Product brand name.

    Returns:
        Config files that were patched.
    """
    patched: list[Path] = []
    for name in BOOTLOADER_DIRS:
        source = source_dir / name
        if not source.is_dir():
            tree.warn(f"Boot loader directory not found: {source}")
            continue
        dest = tree.root / name
        if dest.exists():
            shutil.rmtree(dest)
        shutil.copytree(source, dest, symlinks=True)

        for config_file in sorted(dest.rglob("*")):
            if config_file.is_symlink() or not config_file.is_file():
                continue
            if config_file.suffix not in BOOTLOADER_CONFIG_SUFFIXES:
                continue
            original = config_file.read_text(encoding="utf-8")
            updated = brand_boot_text(original, hostname, brand_name)
            if updated != original:
                config_file.write_text(updated, encoding="utf-8")
                patched.append(config_file)
                logger.debug("Branded boot config %s", config_file)

    logger.info("Boot loaders configured (%d configs patched)", len(patched))
    return patched


def apply_site_overlay(tree: OverlayTree, source_dir: Path) -> int:
    """Layer the site airootfs customizations onto the tree.

    Args:
        tree: Tree being composed.
        source_dir: Site customization tree.

    Returns:
        Number of entries copied.
    """
    site_root = source_dir / AIROOTFS_DIRNAME
    if not site_root.is_dir():
        tree.warn(f"Custom files directory not found: {site_root}")
        return 0

    copied = 0
    for name in SITE_OVERLAY_DIRS:
        layer = site_root / name
        if layer.is_dir():
            copied += merge_tree(layer, tree.airootfs / name)
    logger.info("Copied %d custom files", copied)
    return copied


def compose(
    base_template: Path,
    work_dir: Path,
    source_dir: Path,
    config: BuildConfig,
    brand_name: str,
) -> OverlayTree:
    """Compose the working root-filesystem tree.

    Order: base template, profile overlay, denylist removal, boot loaders,
    site overlay.

    Args:
        base_template: Base template tree.
        work_dir: Working directory owned by this run.
        source_dir: Site customization tree (profiles, boot loaders, airootfs).
        config: Resolved build configuration.
        brand_name: Product brand name for boot menus.

    Returns:
        The composed OverlayTree.

    Raises:
        ComposeError: If the base template is missing or a copy fails.
    """
    tree = copy_base_template(base_template, work_dir)
    profile_dir = source_dir / PROFILES_DIRNAME / config.build_profile
    apply_profile(tree, profile_dir, config.architecture)
    remove_denylisted(tree.root)
    try:
        install_bootloaders(tree, source_dir, config.hostname, brand_name)
    except OSError as e:
        raise ComposeError(
            f"Failed to install boot loaders: {e}",
            code="bootloader_error",
        ) from e
    apply_site_overlay(tree, source_dir)
    return tree


def compute_tree_hash(directory: Path) -> str:
    """Compute a deterministic hash of a directory tree.

    The hash is computed over sorted relative paths, file contents and
    permission bits, and symlink targets. Empty directories count too.

    Args:
        directory: Directory to hash.

    Returns:
        SHA-256 hex digest of the tree.
    """
    hasher = hashlib.sha256()

    if not directory.exists():
        return hasher.hexdigest()

    for path in sorted(directory.rglob("*")):
        rel_path = path.relative_to(directory).as_posix()
        hasher.update(rel_path.encode("utf-8"))
        hasher.update(b"\0")

        if path.is_symlink():
            hasher.update(b"L")
            hasher.update(str(path.readlink()).encode("utf-8"))
        elif path.is_dir():
            hasher.update(b"D")
        else:
            mode = stat.S_IMODE(path.stat().st_mode)
            hasher.update(f"F{mode:o}".encode())
            hasher.update(b"\0")
            hasher.update(path.read_bytes())
        hasher.update(b"\0")

    return hasher.hexdigest()


__all__ = [
    "BOOTLOADER_DIRS",
    "DENYLIST",
    "OverlayTree",
    "apply_profile",
    "apply_site_overlay",
    "brand_boot_text",
    "compose",
    "compute_tree_hash",
    "copy_base_template",
    "copy_entry",
    "install_bootloaders",
    "merge_tree",
    "remove_denylisted",
]
