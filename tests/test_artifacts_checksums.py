"""Tests for artifacts/checksums.py module."""

import hashlib
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from isoforge.artifacts.checksums import (
    checksum_path,
    compute_file_hash,
    has_iso9660_signature,
    read_checksum_file,
    validate_iso_structure,
    verify_checksum_file,
    write_checksum_file,
)
from isoforge.errors import FinalizeError


class TestComputeFileHash:
    """Tests for compute_file_hash."""

    def test_matches_hashlib(self, tmp_path: Path) -> None:
        path = tmp_path / "data.bin"
        path.write_bytes(b"x" * 200_000)
        assert compute_file_hash(path) == hashlib.sha256(b"x" * 200_000).hexdigest()
        assert compute_file_hash(path, "md5") == hashlib.md5(b"x" * 200_000).hexdigest()


class TestChecksumFiles:
    """Tests for writing and verifying sidecar files."""

    def test_sidecar_format(self, tmp_path: Path) -> None:
        iso = tmp_path / "forge.iso"
        iso.write_bytes(b"image")

        digest, sidecar = write_checksum_file(iso, "sha256")

        assert sidecar == checksum_path(iso, "sha256")
        assert sidecar.name == "forge.iso.sha256"
        assert sidecar.read_text() == f"{digest}  forge.iso\n"
        assert read_checksum_file(sidecar) == (digest, "forge.iso")

    def test_verify_detects_tampering(self, tmp_path: Path) -> None:
        """Scenario: one changed byte after checksumming fails verification."""
        iso = tmp_path / "forge.iso"
        iso.write_bytes(b"image-bytes")
        _, sidecar = write_checksum_file(iso, "sha256")
        assert verify_checksum_file(sidecar, "sha256") is True

        iso.write_bytes(b"image-byteS")

        assert verify_checksum_file(sidecar, "sha256") is False

    def test_verify_missing_target(self, tmp_path: Path) -> None:
        sidecar = tmp_path / "gone.iso.md5"
        sidecar.write_text("d41d8cd98f00b204e9800998ecf8427e  gone.iso\n")
        assert verify_checksum_file(sidecar, "md5") is False

    def test_binary_marker_accepted(self, tmp_path: Path) -> None:
        sidecar = tmp_path / "a.iso.md5"
        sidecar.write_text("ABCDEF  *a.iso\n")
        assert read_checksum_file(sidecar) == ("abcdef", "a.iso")

    def test_malformed(self, tmp_path: Path) -> None:
        sidecar = tmp_path / "a.iso.sha256"
        sidecar.write_text("justonefield\n")
        with pytest.raises(FinalizeError) as exc_info:
            read_checksum_file(sidecar)
        assert exc_info.value.code == "checksum_malformed"


class TestValidateIsoStructure:
    """Tests for validate_iso_structure."""

    def test_signature_fallback(self, tmp_path: Path, iso_bytes: bytes) -> None:
        iso = tmp_path / "good.iso"
        iso.write_bytes(iso_bytes)
        with patch("shutil.which", return_value=None):
            assert validate_iso_structure(iso) == []
        assert has_iso9660_signature(iso)

    def test_not_an_iso(self, tmp_path: Path) -> None:
        iso = tmp_path / "bad.iso"
        iso.write_bytes(b"\0" * 4096)
        with patch("shutil.which", return_value=None):
            warnings = validate_iso_structure(iso)
        assert warnings == ["ISO 9660 volume descriptor not found"]

    def test_isoinfo_used_when_installed(self, tmp_path: Path) -> None:
        iso = tmp_path / "x.iso"
        iso.write_bytes(b"")
        with (
            patch("shutil.which", return_value="/usr/bin/isoinfo"),
            patch("subprocess.run", return_value=MagicMock(returncode=0)) as mock_run,
        ):
            assert validate_iso_structure(iso) == []
        assert mock_run.call_args[0][0] == ["/usr/bin/isoinfo", "-d", "-i", str(iso)]

    def test_isoinfo_failure_is_warning(self, tmp_path: Path) -> None:
        iso = tmp_path / "x.iso"
        iso.write_bytes(b"")
        with (
            patch("shutil.which", return_value="/usr/bin/isoinfo"),
            patch("subprocess.run", return_value=MagicMock(returncode=5)),
        ):
            assert validate_iso_structure(iso) == ["ISO structure validation failed"]
