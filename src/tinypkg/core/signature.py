"""Detached signature verification for package lists."""

import logging
from pathlib import Path

import gnupg

logger = logging.getLogger(__name__)


class SignatureError(Exception):
    """Raised when GPG is unavailable or a signature cannot be checked."""

    pass


class GpgVerifier:
    """Verifies detached list signatures against a keyring."""

    def __init__(self, keyring_dir: str | None = None):
        self.keyring_dir = keyring_dir
        self._gpg: gnupg.GPG | None = None

    def _instance(self) -> gnupg.GPG:
        if self._gpg is None:
            try:
                if self.keyring_dir:
                    Path(self.keyring_dir).mkdir(parents=True, exist_ok=True)
                    self._gpg = gnupg.GPG(gnupghome=self.keyring_dir)
                else:
                    self._gpg = gnupg.GPG()
            except (OSError, ValueError) as e:
                raise SignatureError(f"GPG not found or not properly configured: {e}") from e
        return self._gpg

    def verify(self, file_path: Path, signature_path: Path) -> bool:
        """Check `signature_path` as a detached signature over `file_path`.

        Returns False for a bad or unknown signature; raises SignatureError
        when verification could not be attempted.
        """
        gpg = self._instance()
        with open(signature_path, "rb") as sig:
            verified = gpg.verify_file(sig, str(file_path))

        if verified.valid:
            logger.info(f"Signature check passed for {file_path.name} ({verified.username})")
            return True

        logger.warning(f"Signature check failed for {file_path.name}: {verified.status}")
        return False
