"""Credential provisioning.

This package handles:
- SHA-512-crypt password hashing through openssl
- The account database files of the live image
- Host identity files
"""

from isoforge.provision.hashing import OpensslPasswordHasher, PasswordHasher
from isoforge.provision.service import ProvisionedAccounts, provision

__all__ = [
    "OpensslPasswordHasher",
    "PasswordHasher",
    "ProvisionedAccounts",
    "provision",
]
