"""Error taxonomy for the build pipeline.

Every error carries a machine-readable ``code`` and an ``ErrorKind`` used by
the stage sequencer to classify failed stages. Collaborator failures are
never retried; they surface as one of these errors.
"""

from enum import Enum

from isoforge.types import ErrorKind, ExitCode


class BuildError(Exception):
    """Base error for all pipeline failures."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    exit_code: ExitCode = ExitCode.STAGE_FAILURE

    def __init__(self, message: str, code: str = "build_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigErrorKind(str, Enum):
    """Reasons a configuration can be rejected."""

    PASSWORD_MISMATCH = "password_mismatch"
    MISSING_CREDENTIAL = "missing_credential"
    OUT_OF_RANGE = "out_of_range"
    UNKNOWN_OPTION = "unknown_option"
    INVALID_VALUE = "invalid_value"


class ConfigError(BuildError):
    """Bad or missing configuration; reported before any destructive action."""

    kind = ErrorKind.CONFIG
    exit_code = ExitCode.CONFIG_ERROR

    def __init__(
        self,
        message: str,
        reason: ConfigErrorKind,
        field: str | None = None,
    ) -> None:
        super().__init__(message, code=reason.value)
        self.reason = reason
        self.field = field


class ComposeError(BuildError):
    """Overlay composition failed."""

    kind = ErrorKind.COMPOSE

    def __init__(self, message: str, code: str = "compose_error") -> None:
        super().__init__(message, code=code)


class ProvisionError(BuildError):
    """Credential generation failed; no fallback credential is ever used."""

    kind = ErrorKind.PROVISION

    def __init__(self, message: str, code: str = "provision_error") -> None:
        super().__init__(message, code=code)


class StageFailure(BuildError):
    """A delegated command returned non-success."""

    kind = ErrorKind.STAGE

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "stage_failure",
    ) -> None:
        super().__init__(message, code=code)
        self.command_exit_code = exit_code


class FinalizeError(BuildError):
    """Fatal post-build artifact problem (missing artifact, bad checksum)."""

    kind = ErrorKind.FINALIZE

    def __init__(self, message: str, code: str = "finalize_error") -> None:
        super().__init__(message, code=code)


class DependencyError(BuildError):
    """Host prerequisites (tools, privileges) are not satisfied."""

    kind = ErrorKind.DEPENDENCY
    exit_code = ExitCode.DEPENDENCY_ERROR

    def __init__(
        self,
        message: str,
        missing: list[str] | None = None,
        code: str = "missing_dependency",
    ) -> None:
        super().__init__(message, code=code)
        self.missing = missing or []


class WorkspaceLockedError(BuildError):
    """Another run holds the workspace lock."""

    kind = ErrorKind.LOCKED
    exit_code = ExitCode.WORKSPACE_LOCKED

    def __init__(self, lock_path: str) -> None:
        super().__init__(
            f"Workspace is locked by another build: {lock_path}",
            code="workspace_locked",
        )
        self.lock_path = lock_path


class Interrupted(BuildError):
    """External cancellation; a controlled shutdown, not a crash."""

    kind = ErrorKind.INTERRUPTED
    exit_code = ExitCode.INTERRUPTED

    def __init__(self, message: str = "Build interrupted by user") -> None:
        super().__init__(message, code="interrupted")


__all__ = [
    "BuildError",
    "ComposeError",
    "ConfigError",
    "ConfigErrorKind",
    "DependencyError",
    "FinalizeError",
    "Interrupted",
    "ProvisionError",
    "StageFailure",
    "WorkspaceLockedError",
]
