"""Output artifact handling.

This package handles:
- Locating and renaming the assembled image
- Checksum sidecars and structural validation
- Detached GPG signatures
- Build reports and manifests
"""

from isoforge.artifacts.finalizer import Finalizer, finalize

__all__ = ["Finalizer", "finalize"]
