"""Checksums and structural checks for the output image.

This module handles:
- Streaming SHA-256 and MD5 digests
- Writing and re-verifying sha256sum/md5sum style sidecar files
- Validating the ISO 9660 structure
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import shutil
import subprocess
from pathlib import Path

from isoforge.errors import FinalizeError

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

CHECKSUM_ALGORITHMS = ("sha256", "md5")

# Primary volume descriptor: sector 16, standard identifier after the type byte
ISO9660_SIGNATURE = b"CD001"
ISO9660_SIGNATURE_OFFSET = 0x8001


def compute_file_hash(
    file_path: Path,
    algorithm: str = "sha256",
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute the hash of a file.

    Args:
        file_path: Path to the file.
        algorithm: hashlib algorithm name.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        Hex digest.
    """
    hasher = hashlib.new(algorithm)
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
    return hasher.hexdigest()


def checksum_path(file_path: Path, algorithm: str) -> Path:
    """Sidecar path for a file, e.g. ``image.iso.sha256``."""
    return file_path.with_name(f"{file_path.name}.{algorithm}")


def write_checksum_file(file_path: Path, algorithm: str) -> tuple[str, Path]:
    """Write a ``<hex>  <name>`` sidecar next to a file.

    Returns:
        Tuple of (digest, sidecar path).
    """
    digest = compute_file_hash(file_path, algorithm)
    sidecar = checksum_path(file_path, algorithm)
    sidecar.write_text(f"{digest}  {file_path.name}\n", encoding="utf-8")
    logger.info("Generated %s checksum: %s", algorithm.upper(), sidecar.name)
    return digest, sidecar


def read_checksum_file(sidecar: Path) -> tuple[str, str]:
    """Parse a sidecar file.

    Returns:
        Tuple of (digest, file name).

    Raises:
        FinalizeError: If the sidecar is malformed.
    """
    line = sidecar.read_text(encoding="utf-8").strip()
    digest, sep, name = line.partition("  ")
    if not sep or not digest or not name:
        raise FinalizeError(
            f"Malformed checksum file: {sidecar}",
            code="checksum_malformed",
        )
    return digest.lower(), name.lstrip("*")


def verify_checksum_file(sidecar: Path, algorithm: str) -> bool:
    """Re-hash the referenced file and compare with the sidecar.

    The referenced file is resolved relative to the sidecar's directory.
    """
    expected, name = read_checksum_file(sidecar)
    target = sidecar.parent / name
    if not target.is_file():
        logger.error("File referenced by %s not found: %s", sidecar.name, name)
        return False
    actual = compute_file_hash(target, algorithm)
    return hmac.compare_digest(actual, expected)


def has_iso9660_signature(iso_path: Path) -> bool:
    """Check the primary volume descriptor's standard identifier."""
    with iso_path.open("rb") as f:
        f.seek(ISO9660_SIGNATURE_OFFSET)
        return f.read(len(ISO9660_SIGNATURE)) == ISO9660_SIGNATURE


def validate_iso_structure(iso_path: Path, timeout: int = 120) -> list[str]:
    """Validate the image structure.

    Uses ``isoinfo -d -i`` when it is installed, otherwise checks the volume
    descriptor signature directly.

    Returns:
        Warnings; empty when the image looks valid.
    """
    isoinfo = shutil.which("isoinfo")
    if isoinfo is not None:
        try:
            result = subprocess.run(
                [isoinfo, "-d", "-i", str(iso_path)],
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            return [f"ISO structure validation could not run: {e}"]
        if result.returncode != 0:
            return ["ISO structure validation failed"]
        logger.info("ISO structure validated")
        return []

    try:
        valid = has_iso9660_signature(iso_path)
    except OSError as e:
        return [f"ISO structure validation could not read image: {e}"]
    if not valid:
        return ["ISO 9660 volume descriptor not found"]
    logger.info("ISO 9660 volume descriptor found")
    return []


__all__ = [
    "CHECKSUM_ALGORITHMS",
    "HASH_CHUNK_SIZE",
    "checksum_path",
    "compute_file_hash",
    "has_iso9660_signature",
    "read_checksum_file",
    "validate_iso_structure",
    "verify_checksum_file",
    "write_checksum_file",
]
