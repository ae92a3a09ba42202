"""
Utility modules for the storefront auth backend.

This package contains shared utilities used across the application.
"""

from src.utils.encryption import (
    CredentialVault,
    EncryptionError,
    DecryptionError,
    derive_key,
)

__all__ = [
    "CredentialVault",
    "EncryptionError",
    "DecryptionError",
    "derive_key",
]
