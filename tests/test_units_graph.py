"""Tests for units/graph.py module."""

import os
from pathlib import Path

from isoforge.overlay.composer import OverlayTree, compute_tree_hash
from isoforge.units.graph import (
    ADDITIONS,
    REMOVALS,
    SYSTEMD_SYSTEM_DIR,
    ServiceLink,
    edit,
)


def _system_dir(tree: OverlayTree) -> Path:
    return tree.airootfs / SYSTEMD_SYSTEM_DIR


def _seed_template_units(base: Path) -> None:
    (base / "cloud-init.target.wants").mkdir(parents=True)
    (base / "cloud-init.target.wants" / "cloud-init.service").symlink_to(
        "/usr/lib/systemd/system/cloud-init.service"
    )
    (base / "getty@tty1.service.d").mkdir()
    (base / "getty@tty1.service.d" / "autologin.conf").write_text("[Service]\n")
    (base / "multi-user.target.wants").mkdir()
    (base / "multi-user.target.wants" / "sshd.service").symlink_to(
        "/usr/lib/systemd/system/sshd.service"
    )
    (base / "multi-user.target.wants" / "systemd-networkd.service").symlink_to(
        "/usr/lib/systemd/system/systemd-networkd.service"
    )


class TestServiceLink:
    """Tests for ServiceLink."""

    def test_wants_link_inside_directory(self, tmp_path: Path) -> None:
        link = ServiceLink("cups.socket", "sockets.target.wants")
        assert link.link_path(tmp_path) == tmp_path / "sockets.target.wants/cups.socket"
        assert link.source == "/usr/lib/systemd/system/cups.socket"

    def test_alias_link(self, tmp_path: Path) -> None:
        link = ServiceLink("lightdm.service", "display-manager.service")
        assert link.link_path(tmp_path) == tmp_path / "display-manager.service"


class TestEdit:
    """Tests for edit."""

    def test_removals(self, tmp_path: Path) -> None:
        tree = OverlayTree(root=tmp_path)
        base = _system_dir(tree)
        _seed_template_units(base)

        changes = edit(tree)

        assert "cloud-init.target.wants" in changes.removed
        assert "getty@tty1.service.d" in changes.removed
        assert "multi-user.target.wants/sshd.service" in changes.removed
        assert not (base / "cloud-init.target.wants").exists()
        assert not (base / "getty@tty1.service.d").exists()
        assert not (base / "multi-user.target.wants" / "sshd.service").is_symlink()
        # Units outside the removal set are left alone
        networkd = base / "multi-user.target.wants" / "systemd-networkd.service"
        assert networkd.is_symlink()

    def test_additions(self, tmp_path: Path) -> None:
        tree = OverlayTree(root=tmp_path)

        changes = edit(tree)

        base = _system_dir(tree)
        assert len(changes.linked) == len(ADDITIONS)
        wants = base / "multi-user.target.wants" / "NetworkManager.service"
        assert os.readlink(wants) == "/usr/lib/systemd/system/NetworkManager.service"
        alias = base / "display-manager.service"
        assert os.readlink(alias) == "/usr/lib/systemd/system/lightdm.service"
        dispatcher = base / "dbus-org.freedesktop.nm-dispatcher.service"
        assert os.readlink(dispatcher).endswith("NetworkManager-dispatcher.service")
        assert (base / "timers.target.wants").is_dir()

    def test_replaces_wrong_link(self, tmp_path: Path) -> None:
        tree = OverlayTree(root=tmp_path)
        base = _system_dir(tree)
        base.mkdir(parents=True)
        (base / "display-manager.service").symlink_to(
            "/usr/lib/systemd/system/gdm.service"
        )

        edit(tree)

        assert os.readlink(base / "display-manager.service") == (
            "/usr/lib/systemd/system/lightdm.service"
        )

    def test_idempotent(self, tmp_path: Path) -> None:
        """Scenario: a second edit of an edited tree changes nothing."""
        tree = OverlayTree(root=tmp_path)
        _seed_template_units(_system_dir(tree))

        edit(tree)
        first = compute_tree_hash(tree.root)
        changes = edit(tree)

        assert compute_tree_hash(tree.root) == first
        assert changes.removed == []

    def test_removal_set_is_disjoint_from_additions(self) -> None:
        added = {
            str(Path(link.target) / link.unit)
            if link.target.endswith(".wants")
            else link.target
            for link in ADDITIONS
        }
        assert added.isdisjoint(REMOVALS)
