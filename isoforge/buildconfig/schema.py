"""Pydantic model for the resolved build configuration.

BuildConfig is produced once per run by the resolver and threaded as a
parameter into every pipeline component. It is frozen: components never
mutate configuration, and nothing reads configuration from ambient state.
"""

import os
import re
from datetime import date
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

# Linux login name rules (shadow-utils default)
USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
# Used in filenames and boot menus; no separators or whitespace
NAME_PART_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")

EDITIONS = ("standard", "minimal", "server", "developer", "gaming")

MIN_COMPRESSION_LEVEL = 1
MAX_COMPRESSION_LEVEL = 9

SECRET_FIELDS = frozenset({"user_password", "root_password"})
# Fields that describe a single invocation and are never persisted
RUN_MODE_FIELDS = frozenset(
    {
        "interactive",
        "verbose",
        "skip_verify",
        "clean_before_build",
        "backup_before_build",
        "keep_intermediate_tree",
    }
)


MAX_PARALLEL_JOBS = 256


def _default_jobs() -> int:
    return min(os.cpu_count() or 1, MAX_PARALLEL_JOBS)


class BuildConfig(BaseModel):
    """Immutable configuration for one pipeline run.

    Attributes:
        username: Primary live user login name.
        hostname: Hostname written into the image and boot menus.
        iso_prefix: Prefix of the produced image filename.
        edition: Edition label used in the image filename.
        architecture: Target architecture (e.g. x86_64).
        build_profile: Name of the profile overlay to apply.
        user_password: Primary user password (never logged or persisted).
        root_password: Root password (never logged or persisted).
        parallel_jobs: Parallelism handed to the package manager and assembler.
        compression_level: Assembler compression level (1-9).
        enable_custom_repo: Set up the local custom package repository.
        enable_testing_repo: Enable the testing package channels.
        keep_intermediate_tree: Keep the assembler build directory after the run.
        sign_artifact: Produce a detached signature for the image.
        signing_key_id: Key to sign with (first available key if None).
        interactive: Collect answers through prompts.
        verbose: Verbose logging and assembler output.
        skip_verify: Skip checksum generation and verification.
        clean_before_build: Remove transient state from earlier runs first.
        backup_before_build: Move earlier artifacts into a backup directory.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    # Identity
    username: Annotated[str, Field(min_length=1, max_length=32)] = "liveuser"
    hostname: Annotated[str, Field(min_length=1, max_length=64)] = "isoforge"
    iso_prefix: Annotated[str, Field(min_length=1, max_length=64)] = "isoforge"
    edition: Annotated[str, Field(min_length=1, max_length=64)] = "standard"
    architecture: Annotated[str, Field(min_length=1, max_length=32)] = "x86_64"
    build_profile: Annotated[str, Field(min_length=1, max_length=64)] = "standard"

    # Secrets
    user_password: SecretStr = Field(default=SecretStr(""), repr=False)
    root_password: SecretStr = Field(default=SecretStr(""), repr=False)

    # Build tuning
    parallel_jobs: int = Field(
        default_factory=_default_jobs, ge=1, le=MAX_PARALLEL_JOBS
    )
    compression_level: int = Field(
        default=MAX_COMPRESSION_LEVEL,
        ge=MIN_COMPRESSION_LEVEL,
        le=MAX_COMPRESSION_LEVEL,
    )
    enable_custom_repo: bool = True
    enable_testing_repo: bool = False
    keep_intermediate_tree: bool = False
    sign_artifact: bool = False
    signing_key_id: str | None = None

    # Run mode
    interactive: bool = False
    verbose: bool = False
    skip_verify: bool = False
    clean_before_build: bool = True
    backup_before_build: bool = True

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username is a valid login name."""
        if not USERNAME_PATTERN.match(v):
            raise ValueError(
                f"username must match pattern {USERNAME_PATTERN.pattern}, got '{v}'"
            )
        if v == "root":
            raise ValueError("username must not be 'root'")
        return v

    @field_validator(
        "hostname", "iso_prefix", "edition", "architecture", "build_profile"
    )
    @classmethod
    def validate_name_part(cls, v: str) -> str:
        """Validate values that end up in filenames and boot menus."""
        if not NAME_PART_PATTERN.match(v):
            raise ValueError(
                f"value must match pattern {NAME_PART_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("signing_key_id")
    @classmethod
    def validate_signing_key(cls, v: str | None) -> str | None:
        """Normalize an empty key id to None."""
        if v is None or not v.strip():
            return None
        return v.strip()

    def iso_basename(self, build_date: date | None = None) -> str:
        """Return the deterministic image name without extension.

        Format: ``<prefix>-<edition>-<arch>-<YYYY.MM.DD>``.
        """
        build_date = build_date or date.today()
        return (
            f"{self.iso_prefix}-{self.edition}-{self.architecture}-"
            f"{build_date:%Y.%m.%d}"
        )

    def persistable(self) -> dict[str, Any]:
        """Return the fields that may be written to the persisted record."""
        return self.model_dump(exclude=set(SECRET_FIELDS | RUN_MODE_FIELDS))

    def has_credentials(self) -> bool:
        """Whether both passwords are set."""
        return bool(
            self.user_password.get_secret_value()
            and self.root_password.get_secret_value()
        )


FIELD_NAMES = frozenset(BuildConfig.model_fields)

__all__ = [
    "EDITIONS",
    "FIELD_NAMES",
    "MAX_COMPRESSION_LEVEL",
    "MAX_PARALLEL_JOBS",
    "MIN_COMPRESSION_LEVEL",
    "RUN_MODE_FIELDS",
    "SECRET_FIELDS",
    "BuildConfig",
]
