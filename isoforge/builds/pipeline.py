"""The image build pipeline.

This module wires the components into the ordered stage list run by the
StageSequencer:

    prepare-workspace, clean-previous-build, backup-previous-artifacts,
    install-prerequisites, compose-overlay, setup-custom-repository,
    configure-package-manager, provision-credentials, configure-services,
    assemble-image, verify-artifact, sign-artifact, generate-report,
    save-configuration

Stages that a configuration switches off are recorded as skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from isoforge.artifacts.finalizer import Finalizer
from isoforge.buildconfig.io import CONFIG_FILENAME, save_config_record
from isoforge.builds.runner import AssemblyResult, install_prerequisites, run_assembler
from isoforge.builds.sequencer import PipelineResult, Stage, StageSequencer
from isoforge.builds.workspace import Workspace, timestamp
from isoforge.errors import ComposeError
from isoforge.overlay.composer import OverlayTree, compose
from isoforge.overlay.pacman_conf import patch_pacman_conf
from isoforge.overlay.repo import setup_custom_repository
from isoforge.provision.service import provision
from isoforge.types import BuildArtifact, StageResult
from isoforge.units.graph import edit as edit_service_graph

if TYPE_CHECKING:
    from isoforge.buildconfig.schema import BuildConfig
    from isoforge.config import Settings
    from isoforge.provision.hashing import PasswordHasher

logger = logging.getLogger(__name__)

Assembler = Callable[..., AssemblyResult]


def default_log_path(workspace: Workspace) -> Path:
    """Build log location for a new run."""
    return workspace.logs_dir / f"build_log_{timestamp()}.log"


class BuildPipeline:
    """One build run from a resolved configuration to a finalized image."""

    def __init__(
        self,
        config: BuildConfig,
        settings: Settings,
        hasher: PasswordHasher | None = None,
        assembler: Assembler | None = None,
        log_path: Path | None = None,
        on_stage: Callable[[int, int, Stage], None] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Resolved build configuration.
            settings: Host settings (paths, timeouts, flags).
            hasher: Password hasher for the provisioner.
            assembler: Replaces run_assembler (same signature).
            log_path: Build log file; one under the workspace if None.
            on_stage: Progress callback passed to the sequencer.
        """
        self.config = config
        self.settings = settings
        self.hasher = hasher
        self.assembler = assembler or run_assembler
        self.workspace = Workspace(settings.base_dir)
        self.log_path = log_path or default_log_path(self.workspace)
        self.on_stage = on_stage

        self.tree: OverlayTree | None = None
        self.repo_dir: Path | None = None
        self.assembly: AssemblyResult | None = None
        self.finalizer = Finalizer(
            self.workspace.out_dir,
            config,
            build_dir=self.workspace.build_dir,
            brand_name=settings.brand_name,
            log_path=self.log_path,
        )

    @property
    def config_file(self) -> Path:
        return self.workspace.config_dir / CONFIG_FILENAME

    @property
    def artifact(self) -> BuildArtifact | None:
        return self.finalizer.artifact

    def _require_tree(self) -> OverlayTree:
        if self.tree is None:
            raise ComposeError("Working tree has not been composed", code="no_tree")
        return self.tree

    # Stage actions

    def prepare_workspace(self) -> None:
        self.workspace.ensure()

    def clean_previous_build(self) -> None:
        self.workspace.clean_previous_build(clean_cache=True)

    def backup_previous_artifacts(self) -> None:
        self.workspace.backup_previous_artifacts(self.config_file)

    def install_prerequisites(self) -> None:
        install_prerequisites(self.log_path, timeout=self.settings.command_timeout)

    def compose_overlay(self) -> None:
        self.tree = compose(
            self.settings.template_dir,
            self.workspace.tree_dir,
            self.settings.source_dir,
            self.config,
            self.settings.brand_name,
        )

    def setup_custom_repository(self) -> None:
        self.repo_dir = setup_custom_repository(
            self.settings.source_dir,
            self.settings.repo_system_dir,
            self.settings.repo_name,
            timeout=self.settings.command_timeout,
        )

    def configure_package_manager(self) -> None:
        tree = self._require_tree()
        if not tree.pacman_conf.is_file():
            raise ComposeError(
                f"pacman.conf not found in working tree: {tree.pacman_conf}",
                code="pacman_conf_missing",
            )
        repo_name = self.settings.repo_name if self.repo_dir is not None else None
        patch_pacman_conf(tree.pacman_conf, self.config, repo_name, self.repo_dir)

    def provision_credentials(self) -> None:
        provision(self._require_tree(), self.config, hasher=self.hasher)

    def configure_services(self) -> None:
        edit_service_graph(self._require_tree())

    def assemble_image(self) -> StageResult | None:
        tree = self._require_tree()
        self.assembly = self.assembler(
            self.config,
            tree.root,
            self.workspace.build_dir,
            self.workspace.out_dir,
            self.log_path,
            timeout=self.settings.build_timeout,
        )
        if not self.assembly.success:
            return StageResult.failure(
                "assemble-image",
                self.assembly.error_message
                or f"Assembler failed with exit code {self.assembly.exit_code}",
                exit_code=self.assembly.exit_code,
            )
        self.finalizer.rename(self.finalizer.locate(since=self.assembly.started_at))
        return None

    def verify_artifact(self) -> None:
        self.finalizer.verify()

    def sign_artifact(self) -> None:
        self.finalizer.sign()

    def generate_report(self) -> None:
        self.finalizer.report()

    def save_configuration(self) -> None:
        save_config_record(self.config_file, self.config)

    def cleanup(self) -> None:
        repo_dir = (
            self.settings.repo_system_dir if self.config.enable_custom_repo else None
        )
        self.workspace.cleanup(
            keep_build_dir=self.config.keep_intermediate_tree,
            repo_dir=repo_dir,
        )

    def stages(self) -> list[Stage]:
        """Return the ordered stage list for this configuration."""
        config = self.config
        return [
            Stage("prepare-workspace", self.prepare_workspace),
            Stage(
                "clean-previous-build",
                self.clean_previous_build,
                enabled=config.clean_before_build,
            ),
            Stage(
                "backup-previous-artifacts",
                self.backup_previous_artifacts,
                enabled=config.backup_before_build,
            ),
            Stage(
                "install-prerequisites",
                self.install_prerequisites,
                enabled=self.settings.install_prerequisites,
            ),
            Stage("compose-overlay", self.compose_overlay),
            Stage(
                "setup-custom-repository",
                self.setup_custom_repository,
                enabled=config.enable_custom_repo,
            ),
            Stage("configure-package-manager", self.configure_package_manager),
            Stage("provision-credentials", self.provision_credentials),
            Stage("configure-services", self.configure_services),
            Stage("assemble-image", self.assemble_image),
            Stage(
                "verify-artifact",
                self.verify_artifact,
                enabled=not config.skip_verify,
            ),
            Stage("sign-artifact", self.sign_artifact, enabled=config.sign_artifact),
            Stage("generate-report", self.generate_report),
            Stage("save-configuration", self.save_configuration),
        ]

    def summary(self) -> dict[str, Any]:
        """Key facts about the run, for display."""
        return {
            "username": self.config.username,
            "hostname": self.config.hostname,
            "edition": self.config.edition,
            "profile": self.config.build_profile,
            "architecture": self.config.architecture,
            "log_path": str(self.log_path),
        }

    def run(self) -> PipelineResult:
        """Run the pipeline.

        Returns:
            PipelineResult from the sequencer.

        Raises:
            WorkspaceLockedError: If another build holds the workspace.
        """
        logger.info("Starting build %s", self.config.iso_basename())
        for key, value in self.summary().items():
            logger.info("  %s: %s", key, value)

        sequencer = StageSequencer(
            self.stages(),
            work_tree=self.workspace.tree_dir,
            rescue_root=self.workspace.backup_dir,
            cleanup=self.cleanup,
            lock_path=self.workspace.lock_path,
            on_stage=self.on_stage,
        )
        return sequencer.run()


__all__ = ["Assembler", "BuildPipeline", "default_log_path"]
