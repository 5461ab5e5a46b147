"""Configuration settings for isoforge.

Uses pydantic-settings for config parsing from environment variables
and defaults. These are host-level settings (where things live, which
tools to use); per-build choices live in BuildConfig.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_base_dir() -> Path:
    """Return the default base directory for build state."""
    return Path.home() / ".local" / "share" / "isoforge"


def _default_source_dir() -> Path:
    """Return the default site customization source directory."""
    return Path.cwd() / "archiso"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the ISOFORGE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="ISOFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    base_dir: Path = Field(
        default_factory=_default_base_dir,
        description="Root directory for build, output, backup and log state",
    )
    source_dir: Path = Field(
        default_factory=_default_source_dir,
        description="Site customization tree (profiles, airootfs, bootloaders)",
    )
    template_dir: Path = Field(
        default=Path("/usr/share/archiso/configs/releng"),
        description="Base template tree copied verbatim into the work tree",
    )
    repo_system_dir: Path = Field(
        default=Path("/opt/isoforge_repo"),
        description="System location the custom package repository is copied to",
    )

    # Branding and repository naming
    repo_name: str = Field(
        default="isoforge_repo",
        description="Name of the custom package repository",
    )
    brand_name: str = Field(
        default="Araf OS",
        description="Product name substituted into bootloader menus",
    )

    # Credentials supplied through the environment
    user_password: SecretStr | None = Field(
        default=None,
        description="Primary user password (skips prompting)",
    )
    root_password: SecretStr | None = Field(
        default=None,
        description="Root password (skips prompting)",
    )
    allow_insecure_defaults: bool = Field(
        default=False,
        description="Allow the development default password when none is given",
    )

    # Operational modes
    debug: bool = Field(
        default=False,
        description="Debug mode - forces DEBUG logging",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    require_root: bool = Field(
        default=True,
        description="Refuse to build unless running as root",
    )
    install_prerequisites: bool = Field(
        default=True,
        description="Install assembler packages with pacman before building",
    )

    # Timeouts (in seconds)
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for the image assembler (None = no timeout)",
    )
    command_timeout: int = Field(
        default=1800,
        ge=10,
        description="Timeout for auxiliary commands (pacman, repo-add, gpg)",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secret values are masked by pydantic.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
