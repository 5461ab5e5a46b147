"""Artifact finalization.

Turns the assembler's raw output into the published artifact set: a
deterministically named image, checksum sidecars, an optional detached
signature, a text report and a JSON manifest.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from isoforge.artifacts.checksums import (
    validate_iso_structure,
    verify_checksum_file,
    write_checksum_file,
)
from isoforge.artifacts.report import (
    copy_package_list,
    generate_manifest,
    write_manifest,
    write_report,
)
from isoforge.artifacts.signing import sign_file
from isoforge.errors import FinalizeError
from isoforge.types import BuildArtifact, SigningStatus

if TYPE_CHECKING:
    from isoforge.buildconfig.schema import BuildConfig

logger = logging.getLogger(__name__)

ISO_SUFFIX = ".iso"

# Allowance for coarse filesystem timestamps
MTIME_SLACK_SECONDS = 2.0


class Finalizer:
    """Post-build steps for one run's output directory."""

    def __init__(
        self,
        out_dir: Path,
        config: BuildConfig,
        build_dir: Path | None = None,
        brand_name: str = "",
        log_path: Path | None = None,
        build_date: date | None = None,
    ) -> None:
        self.out_dir = out_dir
        self.config = config
        self.build_dir = build_dir
        self.brand_name = brand_name or config.iso_prefix
        self.log_path = log_path
        self.build_date = build_date or date.today()
        self.artifact: BuildArtifact | None = None

    @property
    def final_name(self) -> str:
        return f"{self.config.iso_basename(self.build_date)}{ISO_SUFFIX}"

    def _require_artifact(self) -> BuildArtifact:
        if self.artifact is None:
            return self.rename(self.locate())
        return self.artifact

    def locate(self, since: datetime | None = None) -> Path:
        """Find the image the assembler produced.

        With ``since`` (the assembly start time), an image modified at or
        after it is taken as the one this run produced. Otherwise, or when
        that does not single one out, images not already carrying today's
        final name are preferred.

        Raises:
            FinalizeError: If there is no image or the choice is ambiguous.
        """
        candidates = sorted(
            p for p in self.out_dir.glob(f"*{ISO_SUFFIX}") if p.is_file()
        )
        if not candidates:
            raise FinalizeError(
                f"No ISO file found in {self.out_dir}",
                code="no_artifact",
            )
        if len(candidates) > 1 and since is not None:
            threshold = since.timestamp() - MTIME_SLACK_SECONDS
            produced = [p for p in candidates if p.stat().st_mtime >= threshold]
            if len(produced) == 1:
                return produced[0]
        if len(candidates) > 1:
            fresh = [p for p in candidates if p.name != self.final_name]
            if len(fresh) == 1:
                return fresh[0]
            raise FinalizeError(
                "Several ISO files found, cannot tell which one was just built: "
                + ", ".join(p.name for p in candidates),
                code="ambiguous_artifact",
            )
        return candidates[0]

    def rename(self, path: Path) -> BuildArtifact:
        """Rename the image to its deterministic name.

        An existing file with that name is overwritten.
        """
        target = self.out_dir / self.final_name
        warnings: list[str] = []
        if path != target:
            if target.exists():
                message = f"Overwriting existing artifact {target.name}"
                logger.warning(message)
                warnings.append(message)
            try:
                os.replace(path, target)
            except OSError as e:
                raise FinalizeError(
                    f"Failed to rename {path.name} to {target.name}: {e}",
                    code="rename_failed",
                ) from e
            logger.info("Renamed ISO to: %s", target.name)

        self.artifact = BuildArtifact(
            path=target,
            size_bytes=target.stat().st_size,
            warnings=warnings,
        )
        return self.artifact

    def verify(self) -> BuildArtifact:
        """Write checksum sidecars, re-verify them and check the structure.

        Raises:
            FinalizeError: If a checksum does not verify.
        """
        artifact = self._require_artifact()
        logger.info("ISO File: %s (%d bytes)", artifact.filename, artifact.size_bytes)

        artifact.sha256, artifact.sha256_path = write_checksum_file(
            artifact.path, "sha256"
        )
        artifact.md5, artifact.md5_path = write_checksum_file(artifact.path, "md5")

        for algorithm, sidecar in (
            ("sha256", artifact.sha256_path),
            ("md5", artifact.md5_path),
        ):
            if not verify_checksum_file(sidecar, algorithm):
                raise FinalizeError(
                    f"{algorithm.upper()} checksum verification failed for "
                    f"{artifact.filename}",
                    code="checksum_mismatch",
                )
            logger.info("%s checksum verified", algorithm.upper())

        for warning in validate_iso_structure(artifact.path):
            logger.warning(warning)
            artifact.warnings.append(warning)
        return artifact

    def sign(self) -> BuildArtifact:
        """Sign the image; problems are recorded as warnings."""
        artifact = self._require_artifact()
        result = sign_file(artifact.path, self.config.signing_key_id)
        artifact.signing_status = result.status
        artifact.signature_path = result.signature_path
        if result.status == SigningStatus.NO_KEY:
            message = f"{result.message}, skipping signing"
            logger.warning(message)
            artifact.warnings.append(message)
        elif result.status == SigningStatus.FAILED:
            message = f"Failed to sign ISO: {result.message}"
            logger.warning(message)
            artifact.warnings.append(message)
        return artifact

    def report(self) -> BuildArtifact:
        """Write the report, the manifest and the package list copy.

        Failures here are logged and never fail the build.
        """
        artifact = self._require_artifact()
        try:
            if self.build_dir is not None:
                artifact.package_list_path = copy_package_list(
                    self.build_dir, self.out_dir, self.config.architecture
                )
            artifact.report_path = write_report(
                artifact,
                self.config,
                self.brand_name,
                self.build_dir or self.out_dir,
                self.out_dir,
                log_path=self.log_path,
            )
            artifact.manifest_path = write_manifest(
                generate_manifest(artifact, self.config),
                artifact.path.with_name(f"{artifact.filename}.manifest.json"),
            )
        except (OSError, ValueError, TypeError) as e:
            logger.error("Failed to generate build report: %s", e)
        return artifact


def finalize(
    out_dir: Path,
    config: BuildConfig,
    build_dir: Path | None = None,
    brand_name: str = "",
    log_path: Path | None = None,
    build_date: date | None = None,
) -> BuildArtifact:
    """Run every finalization step on an output directory.

    Verification is skipped with ``config.skip_verify``; signing only runs
    with ``config.sign_artifact``.

    Returns:
        The finalized BuildArtifact.

    Raises:
        FinalizeError: If the image is missing, ambiguous or fails its
            checksum verification.
    """
    finalizer = Finalizer(
        out_dir,
        config,
        build_dir=build_dir,
        brand_name=brand_name,
        log_path=log_path,
        build_date=build_date,
    )
    finalizer.rename(finalizer.locate())
    if not config.skip_verify:
        finalizer.verify()
    if config.sign_artifact:
        finalizer.sign()
    return finalizer.report()


__all__ = ["Finalizer", "finalize"]
