"""Build report and manifest generation.

This module handles:
- Rendering the human-readable build report
- Generating the JSON build manifest
- Copying the assembler's package list next to the image
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from isoforge import __version__
from isoforge.provision.accounts import PRIMARY_GID, PRIMARY_UID

if TYPE_CHECKING:
    from isoforge.buildconfig.schema import BuildConfig
    from isoforge.types import BuildArtifact

logger = logging.getLogger(__name__)

REPORT_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def format_size(size_bytes: int) -> str:
    """Human-readable size, e.g. ``1.2G``."""
    size = float(size_bytes)
    for unit in ("B", "K", "M", "G", "T"):
        if size < 1024 or unit == "T":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size_bytes}B"


def package_list_source(build_dir: Path, architecture: str) -> Path:
    """Where the assembler leaves the installed package list."""
    return build_dir / "iso" / "arch" / f"pkglist.{architecture}.txt"


def copy_package_list(build_dir: Path, out_dir: Path, architecture: str) -> Path | None:
    """Copy the package list into the output directory if it exists."""
    source = package_list_source(build_dir, architecture)
    if not source.is_file():
        logger.debug("No package list at %s", source)
        return None
    dest = out_dir / source.name
    shutil.copy2(source, dest)
    logger.info("Copied package list %s", dest.name)
    return dest


def _read_sidecar(path: Path | None, label: str) -> str:
    if path is not None and path.is_file():
        return path.read_text(encoding="utf-8").strip()
    return f"{label}: Not available"


def render_report(
    artifact: BuildArtifact,
    config: BuildConfig,
    brand_name: str,
    build_dir: Path,
    out_dir: Path,
    log_path: Path | None = None,
    now: datetime | None = None,
) -> str:
    """Render the plain-text build report."""
    now = now or datetime.now()
    title = f"{brand_name} ISO Build Report"
    lines = [
        title,
        "=" * len(title),
        "",
        "Build Information:",
        "-----------------",
        f"Build Date:       {now.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Builder Version:  {__version__}",
        f"Build Profile:    {config.build_profile}",
        f"Edition:          {config.edition}",
        f"Architecture:     {config.architecture}",
        "",
        "System Configuration:",
        "--------------------",
        f"Hostname:         {config.hostname}",
        f"Username:         {config.username}",
        f"User UID:         {PRIMARY_UID}",
        f"User GID:         {PRIMARY_GID}",
        "",
        "ISO Details:",
        "------------",
        f"ISO File:         {artifact.filename}",
        f"ISO Size:         {format_size(artifact.size_bytes)}",
        f"Build Directory:  {build_dir}",
        f"Output Directory: {out_dir}",
        "",
        "Build Options:",
        "--------------",
        f"Parallel Jobs:    {config.parallel_jobs}",
        f"Compression:      Level {config.compression_level}",
        f"Custom Repo:      {str(config.enable_custom_repo).lower()}",
        f"Testing Repo:     {str(config.enable_testing_repo).lower()}",
        f"ISO Signed:       {artifact.signing_status.value}",
        "",
        "Checksums:",
        "----------",
        _read_sidecar(artifact.sha256_path, "SHA256"),
        _read_sidecar(artifact.md5_path, "MD5"),
        "",
        "Build Log:",
        "----------",
        f"Log file: {log_path if log_path is not None else 'not recorded'}",
    ]
    if artifact.warnings:
        lines.extend(["", "Warnings:", "---------"])
        lines.extend(f"- {warning}" for warning in artifact.warnings)
    if artifact.package_list_path is not None:
        lines.extend(["", f"Package list: {artifact.package_list_path.name}"])
    return "\n".join(lines) + "\n"


def generate_manifest(
    artifact: BuildArtifact,
    config: BuildConfig,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate the build manifest.

    The manifest contains:
    - The image with its size, checksums and signature status
    - The persistable build configuration
    - Timestamps
    - Optional extra metadata

    Args:
        artifact: The finalized image.
        config: Resolved build configuration (secrets are never included).
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    now = datetime.now(timezone.utc)

    manifest: dict[str, Any] = {
        "version": "1.0",
        "builder_version": __version__,
        "generated_at": now.isoformat(),
        "artifact": {
            "filename": artifact.filename,
            "size_bytes": artifact.size_bytes,
            "sha256": artifact.sha256,
            "md5": artifact.md5,
            "signature": (
                artifact.signature_path.name if artifact.signature_path else None
            ),
            "signing_status": artifact.signing_status.value,
        },
        "build_inputs": config.persistable(),
    }

    if artifact.package_list_path is not None:
        manifest["package_list"] = artifact.package_list_path.name
    if artifact.warnings:
        manifest["warnings"] = list(artifact.warnings)
    if extra_metadata:
        manifest["metadata"] = extra_metadata

    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True, default=str)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


def write_report(
    artifact: BuildArtifact,
    config: BuildConfig,
    brand_name: str,
    build_dir: Path,
    out_dir: Path,
    log_path: Path | None = None,
    now: datetime | None = None,
) -> Path:
    """Write the text report as ``build-report_<timestamp>.txt``."""
    now = now or datetime.now()
    report_path = out_dir / f"build-report_{now.strftime(REPORT_TIMESTAMP_FORMAT)}.txt"
    report_path.write_text(
        render_report(artifact, config, brand_name, build_dir, out_dir, log_path, now),
        encoding="utf-8",
    )
    logger.info("Build report generated: %s", report_path.name)
    return report_path


__all__ = [
    "copy_package_list",
    "format_size",
    "generate_manifest",
    "package_list_source",
    "render_report",
    "write_manifest",
    "write_report",
]
