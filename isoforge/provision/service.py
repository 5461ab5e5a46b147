"""Credential provisioning for the working tree.

This module handles:
- Hashing the root and primary user passwords
- Writing passwd, group, shadow and gshadow into the tree
- Writing the hostname and hosts files
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from isoforge.errors import ProvisionError
from isoforge.provision.accounts import (
    AccountRecord,
    GroupRecord,
    build_accounts,
    build_groups,
    render_group,
    render_gshadow,
    render_hosts,
    render_passwd,
    render_shadow,
)
from isoforge.provision.hashing import OpensslPasswordHasher

if TYPE_CHECKING:
    from isoforge.buildconfig.schema import BuildConfig
    from isoforge.overlay.composer import OverlayTree
    from isoforge.provision.hashing import PasswordHasher

logger = logging.getLogger(__name__)

PUBLIC_MODE = 0o644
SECRET_MODE = 0o600


@dataclass
class ProvisionedAccounts:
    """What was written into the tree."""

    accounts: list[AccountRecord]
    groups: list[GroupRecord]
    files: list[Path] = field(default_factory=list)


def _hash_and_check(hasher: PasswordHasher, plaintext: str, who: str) -> str:
    hashed = hasher.hash(plaintext)
    if not hasher.verify(plaintext, hashed):
        raise ProvisionError(
            f"Generated hash for {who} failed verification",
            code="hash_failed",
        )
    return hashed


def _write(path: Path, content: str, mode: int) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.is_symlink():
            path.unlink()
        path.write_text(content, encoding="utf-8")
        os.chmod(path, mode)
    except OSError as e:
        raise ProvisionError(
            f"Failed to write {path}: {e}",
            code="write_error",
        ) from e
    return path


def provision(
    tree: OverlayTree,
    config: BuildConfig,
    hasher: PasswordHasher | None = None,
) -> ProvisionedAccounts:
    """Write the account database and host identity files into the tree.

    Args:
        tree: Composed working tree.
        config: Resolved build configuration (with passwords).
        hasher: Password hasher; defaults to the openssl-backed one.

    Returns:
        ProvisionedAccounts describing what was written.

    Raises:
        ProvisionError: If hashing or writing fails.
    """
    if not config.has_credentials():
        raise ProvisionError(
            "Both user and root passwords are required",
            code="missing_credential",
        )

    hasher = hasher or OpensslPasswordHasher()
    user_hash = _hash_and_check(
        hasher, config.user_password.get_secret_value(), config.username
    )
    root_hash = _hash_and_check(hasher, config.root_password.get_secret_value(), "root")

    accounts = build_accounts(config.username, user_hash, root_hash)
    groups = build_groups(config.username)

    etc = tree.airootfs / "etc"
    files = [
        _write(etc / "passwd", render_passwd(accounts), PUBLIC_MODE),
        _write(etc / "group", render_group(groups), PUBLIC_MODE),
        _write(etc / "shadow", render_shadow(accounts), SECRET_MODE),
        _write(etc / "gshadow", render_gshadow(groups), SECRET_MODE),
        _write(etc / "hostname", f"{config.hostname}\n", PUBLIC_MODE),
        _write(etc / "hosts", render_hosts(config.hostname), PUBLIC_MODE),
    ]

    logger.info(
        "Provisioned accounts for root and %s (%d groups), hostname %s",
        config.username,
        len(groups),
        config.hostname,
    )
    return ProvisionedAccounts(accounts=accounts, groups=groups, files=files)


__all__ = ["ProvisionedAccounts", "provision"]
