"""
Credential encryption utilities.

Implements AES-256-GCM encryption for shop tokens stored at rest.

SECURITY:
- Key is derived from an operator-supplied passphrase with PBKDF2-HMAC-SHA256
  over a fixed, versioned salt (slow on purpose)
- Each encryption uses a unique random nonce, so the same token never
  encrypts to the same value twice
- A fixed application context is bound as associated data
- Decryption never returns partial or empty output: any malformed value or
  authentication failure raises IntegrityError

Persisted format:
    hex(iv) ":" hex(authTag) ":" hex(ciphertext)

Usage:
    from shopee_sync.credentials.encryption import SecretCipher

    cipher = SecretCipher(passphrase=settings.encryption_passphrase.get_secret_value())

    # Encrypt before storage
    encrypted = cipher.encrypt(access_token)

    # Decrypt for use (in memory only)
    plaintext = cipher.decrypt(encrypted)
"""

import logging
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from shopee_sync.platform.errors import ConfigurationError, IntegrityError

logger = logging.getLogger(__name__)


# AES-GCM constants
NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
TAG_SIZE = 16    # 128 bits, standard for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256

# Changing either value makes every stored secret undecryptable.
KEY_DERIVATION_SALT = b"shopee-sync/secret-cipher/v1"
ASSOCIATED_DATA = b"shopee-sync:credential:v1"

DEFAULT_KDF_ITERATIONS = 600000

SEGMENT_SEPARATOR = ":"


def derive_key(passphrase: str, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    """
    Derive a 256-bit key from a passphrase using PBKDF2.

    Args:
        passphrase: Operator-supplied passphrase
        iterations: PBKDF2 iterations (default: 600000)

    Returns:
        32-byte derived key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=KEY_DERIVATION_SALT,
        iterations=iterations,
    )
    return kdf.derive(passphrase.encode("utf-8"))


class SecretCipher:
    """
    AES-256-GCM cipher for credential storage.

    Holds the derived key for its lifetime. Construct one per passphrase and
    pass it explicitly to whatever needs it; there is no process-wide key.
    """

    def __init__(
        self,
        passphrase: Optional[str],
        iterations: int = DEFAULT_KDF_ITERATIONS,
        associated_data: bytes = ASSOCIATED_DATA,
    ):
        """
        Initialize cipher with a passphrase.

        Args:
            passphrase: Operator-supplied passphrase (never persisted)
            iterations: PBKDF2 iterations
            associated_data: Context bound into every ciphertext

        Raises:
            ConfigurationError: If passphrase is missing
        """
        if not passphrase:
            raise ConfigurationError(
                "Encryption passphrase not configured. Set SHOPEE_ENCRYPTION_PASSPHRASE."
            )

        self._aesgcm = AESGCM(derive_key(passphrase, iterations))
        self._associated_data = associated_data

    @classmethod
    def from_settings(cls, settings) -> "SecretCipher":
        """Build a cipher from ShopeeSettings."""
        return cls(passphrase=settings.encryption_passphrase.get_secret_value())

    @staticmethod
    def generate_nonce() -> bytes:
        """
        Generate a new random nonce for encryption.

        Returns:
            12-byte cryptographically secure random nonce
        """
        return secrets.token_bytes(NONCE_SIZE)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret for storage.

        SECURITY: Input is never logged.

        Args:
            plaintext: The token to encrypt

        Returns:
            ``iv:authTag:ciphertext`` as hex segments

        Raises:
            ValueError: If plaintext is empty
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty secret")

        nonce = self.generate_nonce()

        # AESGCM.encrypt returns ciphertext + tag concatenated
        ciphertext_with_tag = self._aesgcm.encrypt(
            nonce,
            plaintext.encode("utf-8"),
            self._associated_data,
        )
        ciphertext = ciphertext_with_tag[:-TAG_SIZE]
        auth_tag = ciphertext_with_tag[-TAG_SIZE:]

        return SEGMENT_SEPARATOR.join(
            (nonce.hex(), auth_tag.hex(), ciphertext.hex())
        )

    def decrypt(self, value: str) -> str:
        """
        Decrypt a stored secret.

        SECURITY:
        - Decrypted value must NEVER be logged
        - Decrypted value should only exist in memory for one call

        Args:
            value: ``iv:authTag:ciphertext`` from the database

        Returns:
            Decrypted plaintext (handle with care!)

        Raises:
            IntegrityError: If the value is malformed or fails authentication
        """
        nonce, auth_tag, ciphertext = self._split(value)

        try:
            plaintext = self._aesgcm.decrypt(
                nonce,
                ciphertext + auth_tag,
                self._associated_data,
            )
        except InvalidTag:
            logger.error("Decryption failed: authentication tag mismatch")
            raise IntegrityError(
                "Failed to decrypt secret. Value may be tampered with or the passphrase changed."
            )

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IntegrityError("Decrypted secret is not valid UTF-8") from e

    def reencrypt(self, value: str, target: "SecretCipher") -> str:
        """
        Re-encrypt a secret under another cipher.

        Used during passphrase rotation procedures.
        """
        plaintext = self.decrypt(value)
        try:
            return target.encrypt(plaintext)
        finally:
            del plaintext

    @staticmethod
    def _split(value: str) -> tuple[bytes, bytes, bytes]:
        if not value or not isinstance(value, str):
            raise IntegrityError("Encrypted secret is empty")

        parts = value.split(SEGMENT_SEPARATOR)
        if len(parts) != 3 or not all(parts):
            raise IntegrityError(
                "Invalid encrypted secret format: expected iv:authTag:ciphertext"
            )

        try:
            nonce, auth_tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise IntegrityError("Invalid encrypted secret format: segments must be hex") from e

        if len(nonce) != NONCE_SIZE or len(auth_tag) != TAG_SIZE:
            raise IntegrityError("Invalid encrypted secret format: bad iv or authTag length")

        return nonce, auth_tag, ciphertext
