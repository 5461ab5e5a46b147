"""Line-oriented patching of the working tree's pacman.conf.

pacman.conf is edited as text, not parsed: every function here touches
only the targeted lines and preserves all other bytes, including line
endings and comments.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from isoforge.buildconfig.schema import BuildConfig

logger = logging.getLogger(__name__)

TESTING_CHANNELS = ("testing", "core-testing", "extra-testing")
MULTILIB_CHANNEL = "multilib"
# Architecture that gets the 32-bit compatibility channel
MULTILIB_ARCHITECTURE = "x86_64"

_PARALLEL_COMMENTED_PREFIX = "#ParallelDownloads"
_PARALLEL_PREFIX = "ParallelDownloads = "


def _lines(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def set_parallel_downloads(text: str, jobs: int) -> str:
    """Enable ParallelDownloads and set its value.

    Args:
        text: pacman.conf content.
        jobs: Number of parallel downloads.

    Returns:
        Patched content.
    """
    out: list[str] = []
    for line in _lines(text):
        if line.startswith(_PARALLEL_COMMENTED_PREFIX):
            line = line[1:]
        body = line.rstrip("\r\n")
        if body.startswith(_PARALLEL_PREFIX):
            line = f"{_PARALLEL_PREFIX}{jobs}{line[len(body) :]}"
        out.append(line)
    return "".join(out)


def enable_optional_channel(text: str, name: str) -> str:
    """Uncomment a commented-out repository block.

    The block runs from the line ``#[name]`` through the next line that
    starts with ``#Include``; one leading ``#`` is stripped from each line in
    it. A missing block leaves the text unchanged.

    Args:
        text: pacman.conf content.
        name: Repository (channel) name.

    Returns:
        Patched content.
    """
    header = f"#[{name}]"
    out: list[str] = []
    in_block = False
    found = False
    for line in _lines(text):
        if not in_block and line.rstrip("\r\n") == header:
            in_block = True
            found = True
        if in_block:
            ends_block = line.startswith("#Include")
            if line.startswith("#"):
                line = line[1:]
            if ends_block:
                in_block = False
        out.append(line)

    if found:
        logger.debug("Enabled %s repository", name)
    return "".join(out)


def has_repository(text: str, name: str) -> bool:
    """Whether an active ``[name]`` section exists."""
    return any(line.strip() == f"[{name}]" for line in _lines(text))


def append_repository(
    text: str,
    name: str,
    server: str,
    sig_level: str = "Optional TrustAll",
    comment: str | None = None,
) -> str:
    """Append a repository stanza unless one with this name already exists.

    Args:
        text: pacman.conf content.
        name: Repository name.
        server: Server line value (e.g. a ``file://`` URI).
        sig_level: Trust policy.
        comment: Optional comment line above the stanza.

    Returns:
        Patched content.
    """
    if has_repository(text, name):
        logger.debug("Repository %s already configured", name)
        return text

    newline = "\r\n" if "\r\n" in text else "\n"
    if text and not text.endswith(("\n", "\r\n")):
        text += newline

    stanza = [""]
    if comment:
        stanza.append(f"# {comment}")
    stanza.extend([f"[{name}]", f"SigLevel = {sig_level}", f"Server = {server}"])
    return text + newline.join(stanza) + newline


def patch_pacman_conf(
    path: Path,
    config: BuildConfig,
    repo_name: str | None = None,
    repo_dir: Path | None = None,
) -> str:
    """Apply all configured edits to a pacman.conf file in place.

    Args:
        path: pacman.conf in the working tree.
        config: Resolved build configuration.
        repo_name: Custom repository name, if one is ready.
        repo_dir: Directory the custom repository was set up in.

    Returns:
        The new content.
    """
    text = path.read_bytes().decode("utf-8")

    text = set_parallel_downloads(text, config.parallel_jobs)

    if repo_name and repo_dir is not None:
        text = append_repository(
            text,
            repo_name,
            server=f"file://{repo_dir}",
            comment="Custom local repository",
        )
        logger.info("Added custom repository %s to pacman.conf", repo_name)

    if config.enable_testing_repo:
        for channel in TESTING_CHANNELS:
            text = enable_optional_channel(text, channel)
        logger.info("Enabled testing repositories")

    if config.architecture == MULTILIB_ARCHITECTURE:
        text = enable_optional_channel(text, MULTILIB_CHANNEL)
        logger.info("Enabled multilib repository")

    path.write_bytes(text.encode("utf-8"))
    return text


__all__ = [
    "MULTILIB_CHANNEL",
    "TESTING_CHANNELS",
    "append_repository",
    "enable_optional_channel",
    "has_repository",
    "patch_pacman_conf",
    "set_parallel_downloads",
]
