"""Password hashing through the system openssl binary.

Plaintext is passed on stdin, never on the command line, so it does not
show up in the process table.
"""

from __future__ import annotations

import hmac
import logging
import shutil
import subprocess
from typing import Protocol

from isoforge.errors import ProvisionError

logger = logging.getLogger(__name__)

OPENSSL = "openssl"
SHA512_CRYPT_PREFIX = "$6$"


class PasswordHasher(Protocol):
    """Produces and checks SHA-512-crypt hashes."""

    def hash(self, plaintext: str) -> str:
        """Hash a password with a fresh random salt."""
        ...

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Check a password against a stored hash."""
        ...


def split_crypt_hash(hashed: str) -> tuple[str, str] | None:
    """Split ``$6$<salt>$<digest>`` into salt and digest.

    Returns:
        ``(salt, digest)``, or None if the hash is not in that form.
    """
    if not hashed.startswith(SHA512_CRYPT_PREFIX):
        return None
    parts = hashed.split("$")
    # ['', '6', salt, digest]
    if len(parts) != 4 or not parts[2] or not parts[3]:
        return None
    return parts[2], parts[3]


class OpensslPasswordHasher:
    """SHA-512-crypt hashing via ``openssl passwd -6 -stdin``."""

    def __init__(self, binary: str | None = None, timeout: int = 30) -> None:
        self.binary = binary
        self.timeout = timeout

    def _resolve_binary(self) -> str:
        binary = self.binary or shutil.which(OPENSSL)
        if binary is None:
            raise ProvisionError(
                "openssl not found; cannot hash passwords",
                code="hash_unavailable",
            )
        return binary

    def _run(self, plaintext: str, salt: str | None = None) -> str:
        cmd = [self._resolve_binary(), "passwd", "-6"]
        if salt is not None:
            cmd.extend(["-salt", salt])
        cmd.append("-stdin")

        try:
            result = subprocess.run(
                cmd,
                input=plaintext + "\n",
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ProvisionError(
                f"openssl not found: {e}",
                code="hash_unavailable",
            ) from e
        except (subprocess.TimeoutExpired, OSError) as e:
            raise ProvisionError(
                f"openssl passwd failed: {e}",
                code="hash_failed",
            ) from e

        if result.returncode != 0:
            raise ProvisionError(
                f"openssl passwd exited with code {result.returncode}: "
                f"{result.stderr.strip()}",
                code="hash_failed",
            )

        hashed = result.stdout.strip()
        if split_crypt_hash(hashed) is None:
            raise ProvisionError(
                "openssl passwd returned malformed output",
                code="hash_failed",
            )
        return hashed

    def hash(self, plaintext: str) -> str:
        """Hash a password with a fresh random salt.

        Raises:
            ProvisionError: If openssl is missing or fails.
        """
        return self._run(plaintext)

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Re-hash with the stored salt and compare in constant time.

        Raises:
            ProvisionError: If openssl is missing or fails.
        """
        parts = split_crypt_hash(hashed)
        if parts is None:
            logger.debug("Unsupported hash format")
            return False
        salt, _ = parts
        candidate = self._run(plaintext, salt=salt)
        return hmac.compare_digest(candidate.encode("utf-8"), hashed.encode("utf-8"))


__all__ = [
    "OpensslPasswordHasher",
    "PasswordHasher",
    "split_crypt_hash",
]
