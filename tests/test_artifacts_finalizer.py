"""Tests for artifacts/finalizer.py module."""

import os
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from isoforge.artifacts.finalizer import Finalizer, finalize
from isoforge.artifacts.signing import SigningResult
from isoforge.buildconfig.schema import BuildConfig
from isoforge.errors import FinalizeError
from isoforge.types import SigningStatus

BUILD_DATE = date(2024, 5, 17)
FINAL_NAME = "forge-standard-x86_64-2024.05.17.iso"


@pytest.fixture
def out_dir(tmp_path: Path) -> Path:
    out = tmp_path / "out"
    out.mkdir()
    return out


def _finalizer(out_dir: Path, config: BuildConfig) -> Finalizer:
    return Finalizer(out_dir, config, brand_name="Forge OS", build_date=BUILD_DATE)


class TestLocateAndRename:
    """Tests for locating and renaming the image."""

    def test_no_artifact(self, out_dir: Path, build_config: BuildConfig) -> None:
        with pytest.raises(FinalizeError) as exc_info:
            _finalizer(out_dir, build_config).locate()
        assert exc_info.value.code == "no_artifact"

    def test_rename_to_deterministic_name(
        self, out_dir: Path, build_config: BuildConfig, iso_bytes: bytes
    ) -> None:
        (out_dir / "archlinux-2024.05.17-x86_64.iso").write_bytes(iso_bytes)
        finalizer = _finalizer(out_dir, build_config)

        artifact = finalizer.rename(finalizer.locate())

        assert artifact.path == out_dir / FINAL_NAME
        assert artifact.size_bytes == len(iso_bytes)
        assert [p.name for p in out_dir.iterdir()] == [FINAL_NAME]

    def test_fresh_image_preferred_over_same_name(
        self, out_dir: Path, build_config: BuildConfig
    ) -> None:
        """An existing same-day image is overwritten with a warning."""
        (out_dir / FINAL_NAME).write_bytes(b"old")
        (out_dir / "archlinux-2024.05.17-x86_64.iso").write_bytes(b"new")
        finalizer = _finalizer(out_dir, build_config)

        artifact = finalizer.rename(finalizer.locate())

        assert (out_dir / FINAL_NAME).read_bytes() == b"new"
        assert any("Overwriting" in w for w in artifact.warnings)

    def test_ambiguous(self, out_dir: Path, build_config: BuildConfig) -> None:
        (out_dir / "a.iso").write_bytes(b"a")
        (out_dir / "b.iso").write_bytes(b"b")
        with pytest.raises(FinalizeError) as exc_info:
            _finalizer(out_dir, build_config).locate()
        assert exc_info.value.code == "ambiguous_artifact"


class TestLocateSince:
    """Tests for locating the image produced after a given time."""

    def test_picks_image_written_after_start(self, out_dir: Path) -> None:
        stale = out_dir / "forge-standard-x86_64-2024.05.16.iso"
        stale.write_bytes(b"old")
        os.utime(stale, (1_000_000_000, 1_000_000_000))
        (out_dir / "archlinux-x86_64.iso").write_bytes(b"new")
        config = BuildConfig(iso_prefix="forge")

        found = _finalizer(out_dir, config).locate(
            since=datetime.now(timezone.utc)
        )

        assert found.name == "archlinux-x86_64.iso"

    def test_falls_back_when_several_are_recent(self, out_dir: Path) -> None:
        (out_dir / "a.iso").write_bytes(b"a")
        (out_dir / "b.iso").write_bytes(b"b")
        config = BuildConfig(iso_prefix="forge")

        with pytest.raises(FinalizeError) as exc_info:
            _finalizer(out_dir, config).locate(
                since=datetime(2000, 1, 1, tzinfo=timezone.utc)
            )

        assert exc_info.value.code == "ambiguous_artifact"


class TestVerify:
    """Tests for Finalizer.verify."""

    def test_writes_and_verifies_sidecars(
        self, out_dir: Path, build_config: BuildConfig, iso_bytes: bytes
    ) -> None:
        (out_dir / "raw.iso").write_bytes(iso_bytes)

        with patch("shutil.which", return_value=None):
            artifact = _finalizer(out_dir, build_config).verify()

        assert artifact.sha256_path == out_dir / f"{FINAL_NAME}.sha256"
        assert artifact.md5_path == out_dir / f"{FINAL_NAME}.md5"
        assert artifact.sha256_path.read_text().startswith(artifact.sha256)
        assert artifact.warnings == []

    def test_mismatch_is_fatal(
        self, out_dir: Path, build_config: BuildConfig, iso_bytes: bytes
    ) -> None:
        (out_dir / "raw.iso").write_bytes(iso_bytes)

        with (
            patch("shutil.which", return_value=None),
            patch(
                "isoforge.artifacts.finalizer.verify_checksum_file",
                return_value=False,
            ),
        ):
            with pytest.raises(FinalizeError) as exc_info:
                _finalizer(out_dir, build_config).verify()

        assert exc_info.value.code == "checksum_mismatch"

    def test_structure_warning_recorded(
        self, out_dir: Path, build_config: BuildConfig
    ) -> None:
        (out_dir / "raw.iso").write_bytes(b"\0" * 1024)

        with patch("shutil.which", return_value=None):
            artifact = _finalizer(out_dir, build_config).verify()

        assert artifact.warnings == ["ISO 9660 volume descriptor not found"]


class TestSign:
    """Tests for Finalizer.sign."""

    def test_no_key_is_warning(
        self, out_dir: Path, build_config: BuildConfig, iso_bytes: bytes
    ) -> None:
        (out_dir / "raw.iso").write_bytes(iso_bytes)

        with patch(
            "isoforge.artifacts.finalizer.sign_file",
            return_value=SigningResult(SigningStatus.NO_KEY, message="No GPG key"),
        ):
            artifact = _finalizer(out_dir, build_config).sign()

        assert artifact.signing_status == SigningStatus.NO_KEY
        assert artifact.warnings == ["No GPG key, skipping signing"]

    def test_signed(
        self, out_dir: Path, build_config: BuildConfig, iso_bytes: bytes
    ) -> None:
        (out_dir / "raw.iso").write_bytes(iso_bytes)
        signature = out_dir / f"{FINAL_NAME}.sig"

        with patch(
            "isoforge.artifacts.finalizer.sign_file",
            return_value=SigningResult(
                SigningStatus.SIGNED, key_id="K", signature_path=signature
            ),
        ) as mock_sign:
            artifact = _finalizer(out_dir, build_config).sign()

        assert artifact.signature_path == signature
        assert mock_sign.call_args[0][0] == out_dir / FINAL_NAME


class TestFinalize:
    """Tests for the full finalize sequence."""

    def test_full_artifact_set(
        self,
        tmp_path: Path,
        out_dir: Path,
        build_config: BuildConfig,
        iso_bytes: bytes,
    ) -> None:
        (out_dir / "raw.iso").write_bytes(iso_bytes)
        pkglist = tmp_path / "build" / "iso" / "arch" / "pkglist.x86_64.txt"
        pkglist.parent.mkdir(parents=True)
        pkglist.write_text("base 3-2\n")

        with patch("shutil.which", return_value=None):
            artifact = finalize(
                out_dir,
                build_config,
                build_dir=tmp_path / "build",
                brand_name="Forge OS",
                build_date=BUILD_DATE,
            )

        names = {p.name for p in out_dir.iterdir()}
        assert FINAL_NAME in names
        assert f"{FINAL_NAME}.sha256" in names
        assert f"{FINAL_NAME}.md5" in names
        assert f"{FINAL_NAME}.manifest.json" in names
        assert "pkglist.x86_64.txt" in names
        assert artifact.report_path is not None
        assert artifact.report_path.name.startswith("build-report_")
        assert artifact.signing_status == SigningStatus.UNSIGNED

    def test_skip_verify(self, out_dir: Path, iso_bytes: bytes) -> None:
        config = BuildConfig(iso_prefix="forge", skip_verify=True)
        (out_dir / "raw.iso").write_bytes(iso_bytes)

        artifact = finalize(out_dir, config, build_date=BUILD_DATE)

        assert artifact.sha256 is None
        assert not (out_dir / f"{FINAL_NAME}.sha256").exists()

    def test_report_failure_does_not_raise(
        self, out_dir: Path, build_config: BuildConfig, iso_bytes: bytes
    ) -> None:
        (out_dir / "raw.iso").write_bytes(iso_bytes)
        finalizer = _finalizer(out_dir, build_config)

        with patch(
            "isoforge.artifacts.finalizer.write_report",
            side_effect=OSError("disk full"),
        ):
            artifact = finalizer.report()

        assert artifact.report_path is None
