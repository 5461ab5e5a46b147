"""Persisted configuration record.

The record is a flat ``KEY=value`` text file read at start (absence is not
an error) and rewritten after a successful build. Secret and run-mode
fields are never written, and are ignored if someone adds them by hand.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from isoforge import __version__
from isoforge.buildconfig.schema import (
    FIELD_NAMES,
    RUN_MODE_FIELDS,
    SECRET_FIELDS,
    BuildConfig,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "builder.conf"

# Written for humans; ignored when read back
INFORMATIONAL_KEYS = frozenset({"LAST_BUILD_DATE", "LAST_BUILD_VERSION"})


def _key_for(field_name: str) -> str:
    return field_name.upper()


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_config_record(text: str, source: str = "<string>") -> dict[str, Any]:
    """Parse the text of a configuration record.

    Args:
        text: File content.
        source: Name used in log messages.

    Returns:
        Mapping of BuildConfig field names to raw string values.
    """
    record: dict[str, Any] = {}
    known = {_key_for(name): name for name in FIELD_NAMES}

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            logger.warning("%s:%d: ignoring malformed line", source, lineno)
            continue

        key, _, value = line.partition("=")
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()

        if key in INFORMATIONAL_KEYS:
            continue
        field_name = known.get(key)
        if field_name is None:
            logger.warning("%s:%d: ignoring unknown key %s", source, lineno, key)
            continue
        if field_name in SECRET_FIELDS:
            logger.warning(
                "%s:%d: ignoring secret key %s; secrets are never read from disk",
                source,
                lineno,
                key,
            )
            continue
        if field_name in RUN_MODE_FIELDS:
            logger.warning(
                "%s:%d: ignoring run-mode key %s; pass it on the command line",
                source,
                lineno,
                key,
            )
            continue

        record[field_name] = _unquote(value)

    return record


def load_config_record(path: Path) -> dict[str, Any]:
    """Load the persisted configuration record.

    Args:
        path: Path to the record file.

    Returns:
        Parsed record, or an empty mapping if the file does not exist.
    """
    if not path.is_file():
        logger.info("No saved configuration at %s, using defaults", path)
        return {}

    logger.info("Loading configuration from %s", path)
    return parse_config_record(path.read_text(encoding="utf-8"), source=str(path))


def render_config_record(config: BuildConfig, now: datetime | None = None) -> str:
    """Render the non-secret part of a configuration as record text.

    Args:
        config: Configuration to render.
        now: Timestamp for the header (defaults to now).

    Returns:
        Record text.
    """
    now = now or datetime.now()
    lines = [
        "# isoforge build configuration",
        f"# Generated on {now:%Y-%m-%d %H:%M:%S}",
        "",
    ]
    for name, value in config.persistable().items():
        if value is None:
            value = ""
        elif isinstance(value, bool):
            value = "true" if value else "false"
        lines.append(f'{_key_for(name)}="{value}"')

    lines.extend(
        [
            "",
            "# Last build information",
            f'LAST_BUILD_DATE="{now.isoformat(timespec="seconds")}"',
            f'LAST_BUILD_VERSION="{__version__}"',
        ]
    )
    return "\n".join(lines) + "\n"


def save_config_record(path: Path, config: BuildConfig) -> Path:
    """Write the configuration record, excluding secret fields.

    Args:
        path: Output file path.
        config: Configuration to persist.

    Returns:
        Path to the written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_config_record(config), encoding="utf-8")
    logger.info("Configuration saved to %s", path)
    return path


__all__ = [
    "CONFIG_FILENAME",
    "load_config_record",
    "parse_config_record",
    "render_config_record",
    "save_config_record",
]
