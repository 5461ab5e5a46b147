"""Detached GPG signatures for the output image."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from isoforge.types import SigningStatus

logger = logging.getLogger(__name__)

GPG = "gpg"


@dataclass
class SigningResult:
    """Outcome of a signing attempt."""

    status: SigningStatus
    key_id: str | None = None
    signature_path: Path | None = None
    message: str | None = None


def parse_secret_key_ids(output: str) -> list[str]:
    """Extract long key IDs from ``gpg --list-secret-keys --keyid-format LONG``.

    Lines look like ``sec   rsa4096/0123456789ABCDEF 2024-01-01 [SC]``.
    """
    keys: list[str] = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] in ("sec", "sec#", "sec>"):
            _, _, key_id = fields[1].partition("/")
            if key_id:
                keys.append(key_id)
    return keys


def find_signing_key(timeout: int = 60) -> str | None:
    """Return the first available secret key ID, or None."""
    gpg = shutil.which(GPG)
    if gpg is None:
        return None
    try:
        result = subprocess.run(
            [gpg, "--list-secret-keys", "--keyid-format", "LONG"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning("Could not list GPG keys: %s", e)
        return None
    if result.returncode != 0:
        return None
    keys = parse_secret_key_ids(result.stdout)
    return keys[0] if keys else None


def sign_file(
    file_path: Path,
    key_id: str | None = None,
    timeout: int = 300,
) -> SigningResult:
    """Produce an armored detached signature ``<file>.sig``.

    Signing problems never raise; they are reported in the result.

    Args:
        file_path: File to sign.
        key_id: Key to sign with; the first secret key when None.
        timeout: gpg timeout in seconds.

    Returns:
        SigningResult.
    """
    gpg = shutil.which(GPG)
    if gpg is None:
        return SigningResult(SigningStatus.NO_KEY, message="gpg not installed")

    key = key_id or find_signing_key()
    if key is None:
        return SigningResult(SigningStatus.NO_KEY, message="No GPG key found")
    logger.info("Using GPG key: %s", key)

    signature = file_path.with_name(f"{file_path.name}.sig")
    cmd = [
        gpg,
        "--batch",
        "--yes",
        "--detach-sign",
        "--armor",
        "--default-key",
        key,
        "--output",
        str(signature),
        str(file_path),
    ]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        return SigningResult(SigningStatus.FAILED, key_id=key, message=str(e))

    if result.returncode != 0:
        return SigningResult(
            SigningStatus.FAILED,
            key_id=key,
            message=f"gpg exited with code {result.returncode}: "
            f"{result.stderr.strip()}",
        )

    logger.info("ISO signed: %s", signature.name)
    return SigningResult(SigningStatus.SIGNED, key_id=key, signature_path=signature)


__all__ = [
    "SigningResult",
    "find_signing_key",
    "parse_secret_key_ids",
    "sign_file",
]
