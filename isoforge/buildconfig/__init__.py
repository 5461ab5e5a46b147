"""Build configuration module.

This module handles:
- The frozen BuildConfig model
- Reading and writing the persisted configuration record
- Interactive and secure prompting
- Resolving defaults, record, environment, CLI and prompts into one config
"""

from isoforge.buildconfig.io import load_config_record, save_config_record
from isoforge.buildconfig.resolver import resolve
from isoforge.buildconfig.schema import EDITIONS, BuildConfig

__all__ = [
    "EDITIONS",
    "BuildConfig",
    "load_config_record",
    "resolve",
    "save_config_record",
]
