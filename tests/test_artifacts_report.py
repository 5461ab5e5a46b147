"""Tests for artifacts/report.py module."""

import json
from datetime import datetime
from pathlib import Path

from isoforge.artifacts.report import (
    copy_package_list,
    format_size,
    generate_manifest,
    render_report,
    write_manifest,
    write_report,
)
from isoforge.buildconfig.schema import BuildConfig
from isoforge.types import BuildArtifact, SigningStatus


def _artifact(tmp_path: Path) -> BuildArtifact:
    iso = tmp_path / "forge-standard-x86_64-2024.05.17.iso"
    iso.write_bytes(b"image")
    sha = tmp_path / f"{iso.name}.sha256"
    sha.write_text(f"abc123  {iso.name}\n")
    return BuildArtifact(
        path=iso,
        size_bytes=5,
        sha256="abc123",
        sha256_path=sha,
        signing_status=SigningStatus.NO_KEY,
        warnings=["No GPG key found, skipping signing"],
    )


class TestFormatSize:
    """Tests for format_size."""

    def test_units(self) -> None:
        assert format_size(512) == "512B"
        assert format_size(2048) == "2.0K"
        assert format_size(3 * 1024**3) == "3.0G"


class TestRenderReport:
    """Tests for render_report."""

    def test_sections(self, tmp_path: Path, build_config: BuildConfig) -> None:
        report = render_report(
            _artifact(tmp_path),
            build_config,
            "Forge OS",
            tmp_path / "build",
            tmp_path,
            log_path=tmp_path / "build.log",
            now=datetime(2024, 5, 17, 12, 0, 0),
        )

        assert report.startswith("Forge OS ISO Build Report\n")
        assert "Build Date:       2024-05-17 12:00:00" in report
        assert "Hostname:         forgebox" in report
        assert "Username:         alice" in report
        assert "Compression:      Level 6" in report
        assert "ISO Signed:       no_key" in report
        assert "abc123  forge-standard-x86_64-2024.05.17.iso" in report
        assert "MD5: Not available" in report
        assert "- No GPG key found, skipping signing" in report
        assert "userpw" not in report
        assert "rootpw" not in report

    def test_write_report_name(self, tmp_path: Path, build_config: BuildConfig) -> None:
        path = write_report(
            _artifact(tmp_path),
            build_config,
            "Forge OS",
            tmp_path,
            tmp_path,
            now=datetime(2024, 5, 17, 12, 0, 0),
        )
        assert path.name == "build-report_20240517_120000.txt"
        assert "Log file: not recorded" in path.read_text()


class TestManifest:
    """Tests for manifest generation."""

    def test_manifest_contents(self, tmp_path: Path, build_config: BuildConfig) -> None:
        manifest = generate_manifest(
            _artifact(tmp_path), build_config, extra_metadata={"ci": "yes"}
        )

        assert manifest["artifact"]["filename"].endswith(".iso")
        assert manifest["artifact"]["sha256"] == "abc123"
        assert manifest["artifact"]["signing_status"] == "no_key"
        assert manifest["build_inputs"]["hostname"] == "forgebox"
        assert "user_password" not in manifest["build_inputs"]
        assert "verbose" not in manifest["build_inputs"]
        assert manifest["warnings"]
        assert manifest["metadata"] == {"ci": "yes"}

    def test_write_manifest(self, tmp_path: Path, build_config: BuildConfig) -> None:
        manifest = generate_manifest(_artifact(tmp_path), build_config)
        path = write_manifest(manifest, tmp_path / "out" / "manifest.json")

        loaded = json.loads(path.read_text())
        assert loaded["artifact"]["size_bytes"] == 5
        assert "rootpw" not in path.read_text()


class TestCopyPackageList:
    """Tests for copy_package_list."""

    def test_copies_when_present(self, tmp_path: Path) -> None:
        source = tmp_path / "build" / "iso" / "arch" / "pkglist.x86_64.txt"
        source.parent.mkdir(parents=True)
        source.write_text("base 3-2\n")
        out = tmp_path / "out"
        out.mkdir()

        dest = copy_package_list(tmp_path / "build", out, "x86_64")

        assert dest == out / "pkglist.x86_64.txt"
        assert dest.read_text() == "base 3-2\n"

    def test_absent(self, tmp_path: Path) -> None:
        assert copy_package_list(tmp_path, tmp_path, "x86_64") is None
