"""Shared fixtures for isoforge tests."""

from pathlib import Path

import pytest

from isoforge.buildconfig.schema import BuildConfig

PACMAN_CONF = """\
[options]
HoldPkg     = pacman glibc
Architecture = auto
#ParallelDownloads = 5

#[core-testing]
#Include = /etc/pacman.d/mirrorlist

[core]
Include = /etc/pacman.d/mirrorlist

#[extra-testing]
#Include = /etc/pacman.d/mirrorlist

[extra]
Include = /etc/pacman.d/mirrorlist

#[multilib]
#Include = /etc/pacman.d/mirrorlist
"""


class FakeHasher:
    """Deterministic stand-in for the openssl hasher."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def hash(self, plaintext: str) -> str:
        self.calls.append(plaintext)
        return f"$6$fakesalt${plaintext[::-1]}"

    def verify(self, plaintext: str, hashed: str) -> bool:
        return hashed == f"$6$fakesalt${plaintext[::-1]}"


@pytest.fixture
def fake_hasher() -> FakeHasher:
    return FakeHasher()


@pytest.fixture
def build_config() -> BuildConfig:
    """A complete configuration with credentials."""
    return BuildConfig(
        username="alice",
        hostname="forgebox",
        iso_prefix="forge",
        edition="standard",
        architecture="x86_64",
        user_password="userpw",
        root_password="rootpw",
        parallel_jobs=4,
        compression_level=6,
    )


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    """A minimal base template tree."""
    template = tmp_path / "template"
    (template / "airootfs" / "etc" / "mkinitcpio.d").mkdir(parents=True)
    (template / "airootfs" / "etc" / "mkinitcpio.conf.d").mkdir(parents=True)
    (template / "airootfs" / "etc" / "motd").write_text("welcome to archiso\n")
    (template / "airootfs" / "etc" / "mkinitcpio.d" / "linux.preset").write_text(
        "PRESETS=('archiso')\n"
    )
    (template / "airootfs" / "etc" / "mkinitcpio.conf.d" / "archiso.conf").write_text(
        "HOOKS=()\n"
    )
    (template / "airootfs" / "etc" / "locale.conf").write_text("LANG=C.UTF-8\n")
    (template / "grub").mkdir()
    (template / "grub" / "grub.cfg").write_text("menuentry 'template'\n")
    (template / "packages.x86_64").write_text("base\nlinux\n")
    (template / "pacman.conf").write_text(PACMAN_CONF)
    (template / "profiledef.sh").write_text("iso_name=archlinux\n")
    return template


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A site customization tree with boot loaders and airootfs files."""
    source = tmp_path / "source"
    for name in ("grub", "efiboot", "syslinux"):
        (source / name).mkdir(parents=True)
    (source / "grub" / "grub.cfg").write_text(
        "menuentry 'Arch Linux archiso' archisobasedir=arch archisolabel=ARCH\n"
    )
    (source / "efiboot" / "loader").mkdir()
    (source / "efiboot" / "loader" / "entries.conf").write_text(
        "title Arch Linux install medium (archiso)\n"
    )
    (source / "syslinux" / "splash.png").write_bytes(b"\x89PNG")
    (source / "airootfs" / "etc").mkdir(parents=True)
    (source / "airootfs" / "etc" / "issue").write_text("site issue\n")
    (source / "airootfs" / "usr" / "local" / "bin").mkdir(parents=True)
    (source / "airootfs" / "usr" / "local" / "bin" / "hello").write_text("#!/bin/sh\n")
    return source


@pytest.fixture
def pacman_conf() -> str:
    """Content of a stock pacman.conf."""
    return PACMAN_CONF


@pytest.fixture
def iso_bytes() -> bytes:
    """Content of a small image with an ISO 9660 volume descriptor."""
    data = bytearray(0x8800)
    data[0x8000] = 1
    data[0x8001:0x8006] = b"CD001"
    return bytes(data)
