"""
Reversible encryption for the Shopify fallback password.

Implements AES-256-CBC with PKCS7 padding. The key is derived once from the
server secret (SHA-256 digest), so the stored key material is never the same
bytes as the shared secret itself.

SECURITY:
- Storing a reversible credential is a deliberate trade-off: it lets the
  token lifecycle manager silently re-authenticate a customer with Shopify
  when token renewal fails, without sending the shopper back to social login.
  Changing this changes externally visible fallback behavior.
- Each encryption uses a fresh random 16-byte IV (never reused)
- Rotating the server secret invalidates every stored blob
- Plaintext is never logged

Stored format:
    <hex-iv>:<hex-ciphertext>

Usage:
    from src.utils.encryption import CredentialVault

    vault = CredentialVault.from_secret(settings.credential_encryption_secret)
    blob = vault.encrypt("fallback-password")
    password = vault.decrypt(blob)
"""

import hashlib
import logging
import secrets

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from src.config.settings import ConfigurationError

logger = logging.getLogger(__name__)


# AES-CBC constants
IV_SIZE = 16     # 128 bits, AES block size
KEY_SIZE = 32    # 256 bits for AES-256
BLOCK_SIZE_BITS = algorithms.AES.block_size

SEPARATOR = ":"


class EncryptionError(Exception):
    """Raised when encryption fails."""
    pass


class DecryptionError(Exception):
    """Raised when a stored credential cannot be decrypted."""
    pass


def derive_key(secret: str) -> bytes:
    """
    Derive the 32-byte vault key from the server secret.

    Args:
        secret: Shared server secret

    Returns:
        SHA-256 digest of the secret
    """
    return hashlib.sha256(secret.encode("utf-8")).digest()


class CredentialVault:
    """
    AES-256-CBC vault for the fallback password.

    The derived key is computed once when the vault is constructed and is
    treated as read-only state for the lifetime of the process. Build one
    vault at startup and inject it where needed.
    """

    __slots__ = ("_key",)

    def __init__(self, key: bytes):
        """
        Initialize vault with an already-derived key.

        Args:
            key: 32-byte AES key

        Raises:
            ConfigurationError: If key is the wrong size
        """
        if len(key) != KEY_SIZE:
            raise ConfigurationError(
                f"Vault key must be {KEY_SIZE} bytes, got {len(key)}"
            )
        self._key = bytes(key)

    @classmethod
    def from_secret(cls, secret: str) -> "CredentialVault":
        """
        Build a vault from the server secret.

        Raises:
            ConfigurationError: If the secret is empty
        """
        if not secret:
            raise ConfigurationError(
                "A server secret is required to derive the credential vault key"
            )
        return cls(derive_key(secret))

    @staticmethod
    def generate_iv() -> bytes:
        """Generate a fresh random IV."""
        return secrets.token_bytes(IV_SIZE)

    def _cipher(self, iv: bytes) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(iv))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a password for storage.

        Args:
            plaintext: Password to encrypt

        Returns:
            "<hex-iv>:<hex-ciphertext>"

        An empty password still encrypts to one full padded block.

        Raises:
            EncryptionError: If encryption fails
        """
        try:
            iv = self.generate_iv()
            padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

            encryptor = self._cipher(iv).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except Exception as e:
            logger.error(
                "Credential encryption failed",
                extra={"operation": "encrypt", "error_type": type(e).__name__},
            )
            raise EncryptionError("Failed to encrypt credential") from e

        return f"{iv.hex()}{SEPARATOR}{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        """
        Decrypt a stored credential.

        SECURITY: The returned value must never be logged.

        Args:
            token: Value produced by encrypt()

        Returns:
            Plaintext password

        Raises:
            DecryptionError: If the token is malformed, the IV has the wrong
                length, or it was produced under a different key
        """
        if not token:
            raise DecryptionError("Encrypted credential is empty")

        parts = token.split(SEPARATOR)
        if len(parts) != 2:
            raise DecryptionError("Encrypted credential is malformed")

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError:
            raise DecryptionError("Encrypted credential is not valid hex")

        if len(iv) != IV_SIZE:
            raise DecryptionError(
                f"Invalid IV length: expected {IV_SIZE} bytes, got {len(iv)}"
            )
        if not ciphertext or len(ciphertext) % IV_SIZE != 0:
            raise DecryptionError("Ciphertext length is not a multiple of the block size")

        try:
            decryptor = self._cipher(iv).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            # Bad padding or garbage bytes both mean the key does not match.
            logger.warning(
                "Credential decryption failed",
                extra={"operation": "decrypt", "error_type": type(e).__name__},
            )
            raise DecryptionError(
                "Failed to decrypt credential. It may be corrupted or the server secret changed."
            ) from e
