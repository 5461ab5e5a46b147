"""Configuration resolver.

Merges built-in defaults, the persisted record, environment-supplied
secrets, CLI arguments and interactive answers into one frozen
BuildConfig. Precedence, lowest to highest:

    defaults < persisted record < environment < CLI arguments < prompts

Interactive answers win because they are collected last, starting from the
already-merged values as their defaults.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import SecretStr, ValidationError

from isoforge.buildconfig.schema import (
    EDITIONS,
    FIELD_NAMES,
    MAX_COMPRESSION_LEVEL,
    MIN_COMPRESSION_LEVEL,
    RUN_MODE_FIELDS,
    SECRET_FIELDS,
    BuildConfig,
)
from isoforge.errors import ConfigError, ConfigErrorKind

if TYPE_CHECKING:
    from isoforge.buildconfig.prompts import Prompter

logger = logging.getLogger(__name__)

# Development-only credential; only used when explicitly allowed
INSECURE_DEFAULT_PASSWORD = "isoforge"

PASSWORD_LABELS = {
    "user_password": "user",
    "root_password": "root",
}


def builtin_defaults() -> dict[str, Any]:
    """Return the built-in defaults as a plain mapping."""
    return BuildConfig().model_dump()


def _secret_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    return str(value)


def _apply_layer(
    merged: dict[str, Any],
    layer: Mapping[str, Any] | None,
    layer_name: str,
    strict: bool,
) -> None:
    """Overlay non-None values of ``layer`` onto ``merged``.

    Raises:
        ConfigError: If ``strict`` and the layer names an unknown field.
    """
    if not layer:
        return
    for key, value in layer.items():
        if key not in FIELD_NAMES:
            if strict:
                raise ConfigError(
                    f"Unknown option: {key}",
                    ConfigErrorKind.UNKNOWN_OPTION,
                    field=key,
                )
            logger.warning("Ignoring unknown %s setting: %s", layer_name, key)
            continue
        if value is None:
            continue
        if key in SECRET_FIELDS and not _secret_value(value):
            continue
        merged[key] = value


def _int_default(merged: Mapping[str, Any], field: str) -> int:
    try:
        return int(str(merged[field]).strip())
    except ValueError:
        raise ConfigError(
            f"Invalid value for {field}: {merged[field]!r} is not an integer",
            ConfigErrorKind.INVALID_VALUE,
            field=field,
        ) from None


def _coerce(merged: dict[str, Any]) -> dict[str, Any]:
    """Validate merged values and return them as typed model values.

    Raises:
        ConfigError: If a value does not fit its field.
    """
    try:
        return BuildConfig.model_validate(merged).model_dump()
    except ValidationError as e:
        raise _validation_error_to_config_error(e) from None


def _check_compression_level(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(
            f"Compression level must be an integer, got {value!r}",
            ConfigErrorKind.INVALID_VALUE,
            field="compression_level",
        )
    try:
        level = int(str(value).strip())
    except ValueError:
        raise ConfigError(
            f"Compression level must be an integer, got {value!r}",
            ConfigErrorKind.INVALID_VALUE,
            field="compression_level",
        ) from None
    if not MIN_COMPRESSION_LEVEL <= level <= MAX_COMPRESSION_LEVEL:
        raise ConfigError(
            f"Compression level must be between {MIN_COMPRESSION_LEVEL} and "
            f"{MAX_COMPRESSION_LEVEL}, got {level}",
            ConfigErrorKind.OUT_OF_RANGE,
            field="compression_level",
        )
    return level


def prompt_password(prompter: Prompter, who: str, field: str) -> str:
    """Prompt for a password twice and compare.

    Args:
        prompter: Source of answers.
        who: Account name the password is for.
        field: BuildConfig field being resolved.

    Returns:
        The entered password (may be empty if the user entered nothing).

    Raises:
        ConfigError: If the confirmation does not match.
    """
    label = "root password" if who == "root" else f"password for {who}"
    password = prompter.secret(f"Enter {label}")
    confirmation = prompter.secret("Confirm password")
    if password != confirmation:
        raise ConfigError(
            "Passwords do not match",
            ConfigErrorKind.PASSWORD_MISMATCH,
            field=field,
        )
    return password


def collect_interactive_answers(
    merged: Mapping[str, Any],
    prompter: Prompter,
) -> dict[str, Any]:
    """Walk the interactive questionnaire.

    Args:
        merged: Values merged so far; used as prompt defaults.
        prompter: Source of answers.

    Returns:
        Mapping of answered fields.
    """
    answers: dict[str, Any] = {}
    answers["username"] = prompter.ask("Username", str(merged["username"]))
    answers["hostname"] = prompter.ask("Hostname", str(merged["hostname"]))
    answers["iso_prefix"] = prompter.ask("ISO name prefix", str(merged["iso_prefix"]))
    answers["edition"] = prompter.choose(
        "Available editions", EDITIONS, str(merged["edition"])
    )

    if not _secret_value(merged.get("user_password")):
        answers["user_password"] = prompt_password(
            prompter, str(answers["username"]), "user_password"
        )
    if not _secret_value(merged.get("root_password")):
        answers["root_password"] = prompt_password(prompter, "root", "root_password")

    answers["clean_before_build"] = prompter.confirm(
        "Clean previous build?", bool(merged["clean_before_build"])
    )
    answers["verbose"] = prompter.confirm(
        "Enable verbose output?", bool(merged["verbose"])
    )
    answers["parallel_jobs"] = prompter.ask_int(
        "Number of parallel jobs", _int_default(merged, "parallel_jobs")
    )
    answers["compression_level"] = prompter.ask_int(
        f"Compression level ({MIN_COMPRESSION_LEVEL}-{MAX_COMPRESSION_LEVEL})",
        _int_default(merged, "compression_level"),
    )
    return answers


def _resolve_passwords(
    merged: dict[str, Any],
    prompter: Prompter | None,
    allow_insecure_defaults: bool,
) -> None:
    for field, who in PASSWORD_LABELS.items():
        if _secret_value(merged.get(field)):
            continue
        if prompter is not None:
            label = str(merged["username"]) if who == "user" else who
            merged[field] = prompt_password(prompter, label, field)
        if _secret_value(merged.get(field)):
            continue
        if allow_insecure_defaults:
            logger.warning(
                "No %s password supplied; using the INSECURE development default",
                who,
            )
            merged[field] = INSECURE_DEFAULT_PASSWORD
            continue
        raise ConfigError(
            f"No {who} password supplied. Set ISOFORGE_{field.upper()} or run "
            "from a terminal to be prompted",
            ConfigErrorKind.MISSING_CREDENTIAL,
            field=field,
        )


def _validation_error_to_config_error(error: ValidationError) -> ConfigError:
    first = error.errors()[0]
    loc = first.get("loc") or ()
    field = str(loc[0]) if loc else None
    message = first.get("msg", str(error))
    if field in SECRET_FIELDS:
        # Never echo a secret input back
        return ConfigError(
            f"Invalid value for {field}",
            ConfigErrorKind.INVALID_VALUE,
            field=field,
        )
    return ConfigError(
        f"Invalid value for {field}: {message}",
        ConfigErrorKind.INVALID_VALUE,
        field=field,
    )


def resolve(
    defaults: Mapping[str, Any] | None = None,
    persisted: Mapping[str, Any] | None = None,
    environment: Mapping[str, Any] | None = None,
    cli_args: Mapping[str, Any] | None = None,
    interactive: bool = False,
    prompter: Prompter | None = None,
    allow_insecure_defaults: bool = False,
) -> BuildConfig:
    """Resolve the configuration for one run.

    Args:
        defaults: Overrides of the built-in defaults (secrets are ignored).
        persisted: Values from the persisted record.
        environment: Values supplied through the environment (passwords).
        cli_args: Values given on the command line; None values mean
            "not given".
        interactive: Run the interactive questionnaire.
        prompter: Source of interactive and secure-prompt answers. Without
            one, no prompting happens.
        allow_insecure_defaults: Substitute the development default password
            when none is supplied. Never enabled in production.

    Returns:
        Frozen BuildConfig.

    Raises:
        ConfigError: If the configuration is invalid or incomplete.
    """
    merged = builtin_defaults()
    if defaults:
        merged.update(
            {key: value for key, value in defaults.items() if key not in SECRET_FIELDS}
        )

    if persisted:
        ignored = sorted(RUN_MODE_FIELDS.intersection(persisted))
        if ignored:
            logger.warning(
                "Ignoring run-mode settings in persisted record: %s",
                ", ".join(ignored),
            )
        _apply_layer(
            merged,
            {k: v for k, v in persisted.items() if k not in RUN_MODE_FIELDS},
            "persisted",
            strict=False,
        )
        merged["compression_level"] = _check_compression_level(
            merged["compression_level"]
        )
        # Record values are raw strings; type them before later layers
        merged = _coerce(merged)
    _apply_layer(merged, environment, "environment", strict=False)
    _apply_layer(merged, cli_args, "command-line", strict=True)

    interactive = bool(interactive or merged.get("interactive"))
    merged["interactive"] = interactive

    # Catch a bad level before prompting so the user is not asked for secrets first
    merged["compression_level"] = _check_compression_level(merged["compression_level"])

    if interactive:
        if prompter is None:
            raise ConfigError(
                "Interactive mode requires a terminal",
                ConfigErrorKind.INVALID_VALUE,
                field="interactive",
            )
        merged.update(collect_interactive_answers(merged, prompter))
        merged["compression_level"] = _check_compression_level(
            merged["compression_level"]
        )

    _resolve_passwords(merged, prompter, allow_insecure_defaults)

    try:
        config = BuildConfig.model_validate(merged)
    except ValidationError as e:
        raise _validation_error_to_config_error(e) from None

    logger.debug("Resolved configuration: %r", config)
    return config


__all__ = [
    "INSECURE_DEFAULT_PASSWORD",
    "builtin_defaults",
    "collect_interactive_answers",
    "prompt_password",
    "resolve",
]
