"""Security manager for credential encryption and keyring storage."""

import base64
import secrets
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..utils.exceptions import SecurityError
from ..utils.logging_config import get_security_logger

KEYRING_SERVICE = "happytrack"
MASTER_KEY_NAME = "master_key"
KDF_ITERATIONS = 100000


def derive_cipher(secret: bytes, salt: bytes) -> Fernet:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=KDF_ITERATIONS)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret)))


class SecurityManager:
    """Stores source-system API keys and SMTP passwords encrypted in the OS keyring.

    A random master key lives in the keyring; the Fernet key is derived from it
    with PBKDF2 and a per-installation salt kept next to the settings file.
    Without a usable keyring backend, ``master_password`` stands in for the
    master key.
    """

    def __init__(
        self,
        app_dir: Optional[Path] = None,
        master_password: Optional[str] = None,
    ):
        self.security_logger = get_security_logger()
        self.app_dir = app_dir or Path.home() / ".happytrack"
        self._master_password = master_password
        self._cipher_suite: Optional[Fernet] = None

        try:
            self._cipher_suite = derive_cipher(self._load_master_key(), self._load_salt())
        except SecurityError:
            raise
        except Exception as e:
            self.security_logger.log_error("encryption_initialization_failed", str(e))
            raise SecurityError(f"Failed to initialize encryption: {e}")

    def _load_master_key(self) -> bytes:
        try:
            stored = keyring.get_password(KEYRING_SERVICE, MASTER_KEY_NAME)
            if stored:
                return base64.b64decode(stored)

            master_key = secrets.token_bytes(32)
            keyring.set_password(
                KEYRING_SERVICE, MASTER_KEY_NAME, base64.b64encode(master_key).decode()
            )
            self.security_logger.log_security_event("master_key_created")
            return master_key

        except KeyringError as e:
            if self._master_password:
                self.security_logger.log_security_event(
                    "keyring_unavailable", severity="WARNING", fallback="master_password"
                )
                return self._master_password.encode()
            raise SecurityError(f"Failed to manage master key: {e}")

    def _load_salt(self) -> bytes:
        salt_path = self.app_dir / "salt"
        if salt_path.exists():
            return salt_path.read_bytes()

        salt = secrets.token_bytes(32)
        salt_path.parent.mkdir(parents=True, exist_ok=True)
        salt_path.write_bytes(salt)
        salt_path.chmod(0o600)
        return salt

    @staticmethod
    def _entry(service: str, name: str) -> str:
        return f"{service}:{name}"

    def encrypt_credential(self, credential: str) -> str:
        if not self._cipher_suite:
            raise SecurityError("Encryption not initialized")
        return self._cipher_suite.encrypt(credential.encode()).decode()

    def decrypt_credential(self, encrypted_credential: str) -> str:
        if not self._cipher_suite:
            raise SecurityError("Encryption not initialized")

        try:
            return self._cipher_suite.decrypt(encrypted_credential.encode()).decode()
        except (InvalidToken, ValueError) as e:
            self.security_logger.log_error(
                "credential_decryption_failed", "Failed to decrypt credential"
            )
            raise SecurityError(f"Failed to decrypt credential: {e}")

    def store_credential(self, service: str, name: str, credential: str) -> None:
        """Encrypt and store a credential under ``service:name``."""
        entry = self._entry(service, name)
        try:
            keyring.set_password(KEYRING_SERVICE, entry, self.encrypt_credential(credential))
        except KeyringError as e:
            self.security_logger.log_error(
                "credential_storage_failed", f"Failed to store credential for {entry}"
            )
            raise SecurityError(f"Failed to store credential: {e}")

        self.security_logger.log_security_event("credential_stored", service=service, name=name)

    def retrieve_credential(self, service: str, name: str) -> Optional[str]:
        """Return the decrypted credential, or None if nothing is stored."""
        try:
            encrypted = keyring.get_password(KEYRING_SERVICE, self._entry(service, name))
        except KeyringError as e:
            raise SecurityError(f"Failed to retrieve credential: {e}")

        return self.decrypt_credential(encrypted) if encrypted else None

    def delete_credential(self, service: str, name: str) -> None:
        try:
            keyring.delete_password(KEYRING_SERVICE, self._entry(service, name))
        except PasswordDeleteError:
            return
        except KeyringError as e:
            raise SecurityError(f"Failed to delete credential: {e}")

        self.security_logger.log_security_event("credential_deleted", service=service, name=name)

    def validate_integrity(self) -> bool:
        """Round-trip a value through the cipher."""
        sample = secrets.token_hex(8)
        try:
            return self.decrypt_credential(self.encrypt_credential(sample)) == sample
        except SecurityError as e:
            self.security_logger.log_error("integrity_check_failed", str(e))
            return False
