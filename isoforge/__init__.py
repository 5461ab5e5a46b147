"""isoforge - staged build pipeline for customized live ISO images.

This package composes a bootable root filesystem tree from a base template,
a named build profile and site customizations, provisions credentials,
drives the image assembler and verifies, signs and reports on the result.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
