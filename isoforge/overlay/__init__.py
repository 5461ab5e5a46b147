"""Working-tree composition.

This package handles:
- Composing the working tree from the base template, profile and site layers
- Line-oriented pacman.conf patching
- The custom local package repository
- The build profile catalog
"""

from isoforge.overlay.composer import OverlayTree, compose, compute_tree_hash
from isoforge.overlay.pacman_conf import patch_pacman_conf
from isoforge.overlay.profiles import ProfileInfo, list_profiles
from isoforge.overlay.repo import setup_custom_repository

__all__ = [
    "OverlayTree",
    "ProfileInfo",
    "compose",
    "compute_tree_hash",
    "list_profiles",
    "patch_pacman_conf",
    "setup_custom_repository",
]
