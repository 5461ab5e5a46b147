"""Service graph editing of the working tree.

Disables a fixed set of units that make no sense on the live image and
enables the desktop, network and printing units through symlinks in
``airootfs/etc/systemd/system``. Re-running an edit on an already edited
tree changes nothing.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from isoforge.errors import ComposeError

if TYPE_CHECKING:
    from isoforge.overlay.composer import OverlayTree

logger = logging.getLogger(__name__)

SYSTEMD_SYSTEM_DIR = Path("etc/systemd/system")
UNIT_SOURCE_DIR = "/usr/lib/systemd/system"

WANTS_DIRS = (
    "network-online.target.wants",
    "multi-user.target.wants",
    "printer.target.wants",
    "sockets.target.wants",
    "timers.target.wants",
    "sysinit.target.wants",
)

# Relative to the systemd system directory
REMOVALS = (
    "cloud-init.target.wants",
    "getty@tty1.service.d",
    "multi-user.target.wants/hv_fcopy_daemon.service",
    "multi-user.target.wants/hv_kvp_daemon.service",
    "multi-user.target.wants/hv_vss_daemon.service",
    "multi-user.target.wants/vmware-vmblock-fuse.service",
    "multi-user.target.wants/vmtoolsd.service",
    "multi-user.target.wants/sshd.service",
    "multi-user.target.wants/iwd.service",
)


@dataclass(frozen=True)
class ServiceLink:
    """One unit enablement.

    ``target`` is either a ``.wants`` directory (the link is placed inside it
    under the unit's name) or an alias name (the link itself carries that
    name).
    """

    unit: str
    target: str

    @property
    def source(self) -> str:
        return f"{UNIT_SOURCE_DIR}/{self.unit}"

    def link_path(self, base: Path) -> Path:
        if self.target.endswith(".wants"):
            return base / self.target / self.unit
        return base / self.target


ADDITIONS = (
    ServiceLink("NetworkManager-wait-online.service", "network-online.target.wants"),
    ServiceLink(
        "NetworkManager-dispatcher.service",
        "dbus-org.freedesktop.nm-dispatcher.service",
    ),
    ServiceLink("NetworkManager.service", "multi-user.target.wants"),
    ServiceLink("reflector.service", "multi-user.target.wants"),
    ServiceLink("haveged.service", "sysinit.target.wants"),
    ServiceLink("cups.service", "printer.target.wants"),
    ServiceLink("cups.socket", "sockets.target.wants"),
    ServiceLink("cups.path", "multi-user.target.wants"),
    ServiceLink("lightdm.service", "display-manager.service"),
)


@dataclass
class ServiceGraphChanges:
    """What an edit did to the tree."""

    removed: list[str] = field(default_factory=list)
    linked: list[Path] = field(default_factory=list)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _link(link: ServiceLink, base: Path) -> Path:
    path = link.link_path(base)
    if path.is_symlink() and os.readlink(path) == link.source:
        return path
    if path.is_symlink() or path.exists():
        _remove(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.symlink_to(link.source)
    return path


def edit(tree: OverlayTree) -> ServiceGraphChanges:
    """Apply the fixed unit removals and additions to the tree.

    Args:
        tree: Composed working tree.

    Returns:
        ServiceGraphChanges listing removed entries and links in place.

    Raises:
        ComposeError: If the filesystem edit fails.
    """
    base = tree.airootfs / SYSTEMD_SYSTEM_DIR
    changes = ServiceGraphChanges()

    try:
        for name in WANTS_DIRS:
            (base / name).mkdir(parents=True, exist_ok=True)

        for rel_path in REMOVALS:
            path = base / rel_path
            if path.is_symlink() or path.exists():
                _remove(path)
                changes.removed.append(rel_path)
                logger.debug("Disabled %s", rel_path)

        for link in ADDITIONS:
            changes.linked.append(_link(link, base))
            logger.debug("Enabled %s via %s", link.unit, link.target)
    except OSError as e:
        raise ComposeError(
            f"Failed to edit service graph: {e}",
            code="service_graph_error",
        ) from e

    logger.info(
        "Service graph configured (%d removed, %d linked)",
        len(changes.removed),
        len(changes.linked),
    )
    return changes


__all__ = [
    "ADDITIONS",
    "REMOVALS",
    "ServiceGraphChanges",
    "ServiceLink",
    "edit",
]
