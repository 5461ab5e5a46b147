"""Build profile catalog.

Profiles live under ``<source>/profiles/<name>``. Each may carry an optional
``profile.yaml`` with a ``description`` and a list of ``includes`` shown by
``isoforge profiles``. The five stock profiles are always listed, even
before their directories exist.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

PROFILE_METADATA_NAME = "profile.yaml"


class ProfileInfo(BaseModel):
    """Description of one build profile."""

    name: str
    description: str = ""
    includes: list[str] = Field(default_factory=list)
    path: Path | None = Field(default=None, description="Profile directory if present")

    @property
    def available(self) -> bool:
        return self.path is not None


BUILTIN_PROFILES: tuple[ProfileInfo, ...] = (
    ProfileInfo(
        name="standard",
        description="Full desktop environment with all applications",
        includes=["GNOME", "office suite", "multimedia", "utilities"],
    ),
    ProfileInfo(
        name="minimal",
        description="Minimal system with basic tools",
        includes=["base system", "network tools", "terminal"],
    ),
    ProfileInfo(
        name="server",
        description="Server optimized edition",
        includes=["SSH", "web server", "database", "monitoring tools"],
    ),
    ProfileInfo(
        name="developer",
        description="Development environment",
        includes=["IDEs", "compilers", "version control", "containers"],
    ),
    ProfileInfo(
        name="gaming",
        description="Gaming optimized system",
        includes=["Steam", "Wine", "gaming drivers", "performance tools"],
    ),
)


def load_profile_metadata(path: Path) -> dict[str, Any]:
    """Load a profile.yaml file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed mapping (empty for an empty file).

    Raises:
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the content is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def _read_profile_dir(profile_dir: Path, base: ProfileInfo | None) -> ProfileInfo:
    info = {
        "name": profile_dir.name,
        "description": base.description if base else "",
        "includes": list(base.includes) if base else [],
        "path": profile_dir,
    }
    metadata_path = profile_dir / PROFILE_METADATA_NAME
    if metadata_path.is_file():
        try:
            metadata = load_profile_metadata(metadata_path)
            for key in ("description", "includes"):
                if key in metadata:
                    info[key] = metadata[key]
            return ProfileInfo.model_validate(info)
        except (yaml.YAMLError, ValueError, ValidationError) as e:
            logger.warning("Ignoring invalid profile metadata %s: %s", metadata_path, e)
            info["description"] = base.description if base else ""
            info["includes"] = list(base.includes) if base else []
    return ProfileInfo.model_validate(info)


def list_profiles(source_dir: Path | None = None) -> list[ProfileInfo]:
    """List the built-in profiles merged with the ones on disk.

    Args:
        source_dir: Site customization tree; ``profiles/`` below it is
            scanned if present.

    Returns:
        Built-in profiles first (in catalog order), then extra on-disk
        profiles sorted by name.
    """
    catalog = {profile.name: profile for profile in BUILTIN_PROFILES}
    found: dict[str, ProfileInfo] = {}

    profiles_root = source_dir / "profiles" if source_dir is not None else None
    if profiles_root is not None and profiles_root.is_dir():
        for entry in sorted(profiles_root.iterdir()):
            if entry.is_dir():
                found[entry.name] = _read_profile_dir(entry, catalog.get(entry.name))

    result = [found.get(name, profile) for name, profile in catalog.items()]
    result.extend(found[name] for name in sorted(found) if name not in catalog)
    return result


__all__ = [
    "BUILTIN_PROFILES",
    "ProfileInfo",
    "list_profiles",
    "load_profile_metadata",
]
