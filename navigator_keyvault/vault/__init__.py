"""Credential Vault — Encrypted storage and rotation policy for API keys.

Security Note (Threat Model):
    Service-secret credentials can be decrypted by anyone holding the
    service secret. Passphrase credentials can only be decrypted with the
    owner's passphrase, which is never stored; a forgotten passphrase
    makes the credential unrecoverable. Decrypted values exist in process
    memory while a reveal request is served.
"""

from .cipher import CredentialCipher
from .config import VaultConfig, generate_service_secret, load_service_secret
from .credentials import CredentialVault
from .crypto import CipherScheme, EncryptedSecret, KeyDerivationMode
from .exceptions import (
    ConfigurationError,
    CredentialNotFound,
    DecryptionError,
    InvalidCiphertextFormat,
    InvalidStatusTransition,
    VaultError,
)
from .expiry import ExpiryPolicyEngine, elapsed_days
from .lifecycle import setup_vault
from .migration import migrate_legacy_credentials
from .models import CredentialRecord, CredentialStatus
from .scheduler import ExpiryScheduler
from .store import CredentialStore, MemoryCredentialStore, PgCredentialStore

__all__ = [
    "CredentialCipher",
    "VaultConfig",
    "generate_service_secret",
    "load_service_secret",
    "CredentialVault",
    "CipherScheme",
    "EncryptedSecret",
    "KeyDerivationMode",
    "ConfigurationError",
    "CredentialNotFound",
    "DecryptionError",
    "InvalidCiphertextFormat",
    "InvalidStatusTransition",
    "VaultError",
    "ExpiryPolicyEngine",
    "elapsed_days",
    "setup_vault",
    "migrate_legacy_credentials",
    "CredentialRecord",
    "CredentialStatus",
    "ExpiryScheduler",
    "CredentialStore",
    "MemoryCredentialStore",
    "PgCredentialStore",
]
