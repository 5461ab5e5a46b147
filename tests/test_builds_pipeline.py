"""Tests for builds/pipeline.py module.

Runs the whole pipeline against temporary template and site trees, with a
fake assembler in place of mkarchiso and a fake password hasher.
"""

import os
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from isoforge.buildconfig.io import load_config_record
from isoforge.buildconfig.schema import BuildConfig
from isoforge.builds.pipeline import BuildPipeline
from isoforge.builds.runner import AssemblyResult
from isoforge.config import Settings
from isoforge.types import ErrorKind, ExitCode, PipelineState, StageStatus


class FakeAssembler:
    """Stands in for run_assembler; writes an image into the output directory."""

    def __init__(self, iso_bytes: bytes, exit_code: int = 0) -> None:
        self.iso_bytes = iso_bytes
        self.exit_code = exit_code
        self.profile_dirs: list[Path] = []

    def __call__(
        self,
        config: BuildConfig,
        profile_dir: Path,
        work_dir: Path,
        out_dir: Path,
        log_path: Path,
        timeout: int | None = None,
    ) -> AssemblyResult:
        self.profile_dirs.append(profile_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        out_dir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        if self.exit_code == 0:
            (out_dir / "archlinux-x86_64.iso").write_bytes(self.iso_bytes)
        return AssemblyResult(
            success=self.exit_code == 0,
            exit_code=self.exit_code,
            out_dir=out_dir,
            work_dir=work_dir,
            log_path=log_path,
            started_at=now,
            finished_at=now,
            command="mkarchiso",
            error_message=(
                None if self.exit_code == 0 else f"exit code {self.exit_code}"
            ),
        )


@pytest.fixture
def settings(tmp_path: Path, template_dir: Path, source_dir: Path) -> Settings:
    return Settings(
        base_dir=tmp_path / "workspace",
        source_dir=source_dir,
        template_dir=template_dir,
        repo_system_dir=tmp_path / "opt" / "forge_repo",
        repo_name="forge_repo",
        brand_name="Forge OS",
        install_prerequisites=False,
    )


def _pipeline(
    config: BuildConfig, settings: Settings, hasher, assembler: FakeAssembler
) -> BuildPipeline:
    return BuildPipeline(
        config,
        settings,
        hasher=hasher,
        assembler=assembler,
        log_path=settings.base_dir / "logs" / "build.log",
    )


class TestBuildPipeline:
    """End-to-end runs of BuildPipeline."""

    def test_stage_order(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        pipeline = _pipeline(
            build_config, settings, fake_hasher, FakeAssembler(iso_bytes)
        )
        names = [stage.name for stage in pipeline.stages()]
        assert names == [
            "prepare-workspace",
            "clean-previous-build",
            "backup-previous-artifacts",
            "install-prerequisites",
            "compose-overlay",
            "setup-custom-repository",
            "configure-package-manager",
            "provision-credentials",
            "configure-services",
            "assemble-image",
            "verify-artifact",
            "sign-artifact",
            "generate-report",
            "save-configuration",
        ]
        enabled = {stage.name: stage.enabled for stage in pipeline.stages()}
        assert enabled["install-prerequisites"] is False
        assert enabled["sign-artifact"] is False
        assert enabled["verify-artifact"] is True

    def test_successful_build(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        """Scenario: a full run produces the named image and its sidecars."""
        assembler = FakeAssembler(iso_bytes)
        pipeline = _pipeline(build_config, settings, fake_hasher, assembler)

        with patch("shutil.which", return_value=None):
            result = pipeline.run()

        assert result.succeeded, result.message
        assert result.exit_status == ExitCode.SUCCESS
        workspace = pipeline.workspace
        final = workspace.out_dir / f"{build_config.iso_basename()}.iso"
        assert final.read_bytes() == iso_bytes
        assert (workspace.out_dir / f"{final.name}.sha256").is_file()
        assert (workspace.out_dir / f"{final.name}.md5").is_file()
        assert list(workspace.out_dir.glob("build-report_*.txt"))
        assert pipeline.artifact is not None
        assert pipeline.artifact.path == final

        # The assembler saw a fully composed and provisioned tree
        assert assembler.profile_dirs == [workspace.tree_dir]
        # Intermediate state is gone afterwards
        assert not workspace.tree_dir.exists()
        assert not workspace.build_dir.exists()

        skipped = {r.stage for r in result.results if r.status == StageStatus.SKIPPED}
        assert skipped == {"install-prerequisites", "sign-artifact"}

    def test_configuration_saved_without_secrets(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        pipeline = _pipeline(
            build_config, settings, fake_hasher, FakeAssembler(iso_bytes)
        )

        with patch("shutil.which", return_value=None):
            pipeline.run()

        record = load_config_record(pipeline.config_file)
        assert record["username"] == "alice"
        assert record["hostname"] == "forgebox"
        text = pipeline.config_file.read_text()
        assert "userpw" not in text
        assert "rootpw" not in text

    def test_no_plaintext_in_output(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        pipeline = _pipeline(
            build_config, settings, fake_hasher, FakeAssembler(iso_bytes)
        )

        with patch("shutil.which", return_value=None):
            pipeline.run()

        for root, _, files in os.walk(settings.base_dir):
            for name in files:
                path = Path(root) / name
                if path.suffix == ".iso":
                    continue
                content = path.read_bytes()
                assert b"userpw" not in content, path
                assert b"rootpw" not in content, path

    def test_assembler_failure(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        """Scenario: the assembler fails; rescue copy saved, tree cleaned."""
        pipeline = _pipeline(
            build_config, settings, fake_hasher, FakeAssembler(iso_bytes, exit_code=1)
        )

        with patch("shutil.which", return_value=None):
            result = pipeline.run()

        assert result.state == PipelineState.RESCUE_SAVED
        assert result.failed_stage == "assemble-image"
        assert result.error_kind == ErrorKind.STAGE
        assert result.exit_code == 1
        assert result.exit_status == ExitCode.STAGE_FAILURE
        assert result.rescue_path is not None
        rescued = result.rescue_path / "releng" / "airootfs" / "etc"
        assert (rescued / "hostname").read_text() == "forgebox\n"
        assert not pipeline.workspace.tree_dir.exists()
        assert not pipeline.config_file.exists()

    def test_missing_template(
        self,
        tmp_path: Path,
        settings: Settings,
        build_config: BuildConfig,
        fake_hasher,
        iso_bytes,
    ) -> None:
        settings = settings.model_copy(update={"template_dir": tmp_path / "none"})
        assembler = FakeAssembler(iso_bytes)
        pipeline = _pipeline(build_config, settings, fake_hasher, assembler)

        result = pipeline.run()

        assert result.failed_stage == "compose-overlay"
        assert result.error_kind == ErrorKind.COMPOSE
        assert assembler.profile_dirs == []

    def test_keep_intermediate_tree(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        config = build_config.model_copy(update={"keep_intermediate_tree": True})
        pipeline = _pipeline(config, settings, fake_hasher, FakeAssembler(iso_bytes))

        with patch("shutil.which", return_value=None):
            result = pipeline.run()

        assert result.succeeded
        assert pipeline.workspace.build_dir.is_dir()
        assert not pipeline.workspace.tree_dir.exists()

    def test_previous_image_backed_up(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        with patch("shutil.which", return_value=None):
            _pipeline(
                build_config, settings, fake_hasher, FakeAssembler(iso_bytes)
            ).run()
            pipeline = _pipeline(
                build_config, settings, fake_hasher, FakeAssembler(iso_bytes)
            )
            result = pipeline.run()

        assert result.succeeded
        backups = list((pipeline.workspace.backup_dir / "iso").iterdir())
        assert len(backups) == 1
        assert list(backups[0].glob("*.iso"))
        assert list((pipeline.workspace.backup_dir / "configs").glob("config_*.conf"))

    def test_stale_image_from_earlier_day_left_alone(
        self, settings: Settings, build_config: BuildConfig, fake_hasher, iso_bytes
    ) -> None:
        """An older renamed image in out/ does not make the new one ambiguous."""
        config = build_config.model_copy(update={"backup_before_build": False})
        pipeline = _pipeline(config, settings, fake_hasher, FakeAssembler(iso_bytes))
        out_dir = pipeline.workspace.out_dir
        out_dir.mkdir(parents=True)
        yesterday = date.today() - timedelta(days=1)
        stale = out_dir / f"{config.iso_basename(yesterday)}.iso"
        stale.write_bytes(b"yesterday")
        day_ago = datetime.now(timezone.utc).timestamp() - 86400
        os.utime(stale, (day_ago, day_ago))

        with patch("shutil.which", return_value=None):
            result = pipeline.run()

        assert result.succeeded, result.message
        final = out_dir / f"{config.iso_basename()}.iso"
        assert final.read_bytes() == iso_bytes
        assert stale.read_bytes() == b"yesterday"
        assert pipeline.artifact is not None
        assert pipeline.artifact.path == final
