"""
Vault Exceptions.

Decryption failures share one user-facing message so callers cannot tell a
wrong passphrase from corrupted ciphertext. Diagnostic detail belongs in the
logs, never in the exception text.
"""

DECRYPTION_FAILED_MESSAGE = "Unable to decrypt credential; check your passphrase"


class VaultError(Exception):
    """Base class for every error raised by the credential vault."""


class DecryptionError(VaultError):
    """Raised when a credential cannot be decrypted.

    Covers wrong passphrase or secret, tampered iv/salt/ciphertext and
    invalid padding. The message is always the generic one.
    """

    def __init__(self, message: str = DECRYPTION_FAILED_MESSAGE):
        super().__init__(message)


class InvalidCiphertextFormat(DecryptionError):
    """Raised when the stored ciphertext framing cannot be parsed.

    Subclass of DecryptionError so callers that do not care can catch a
    single exception type; loggers can still tell them apart.
    """


class ConfigurationError(VaultError, RuntimeError):
    """Raised at startup when the vault configuration is missing or unsafe."""


class CredentialNotFound(VaultError, KeyError):
    """Raised when a credential id does not exist for the given owner."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Credential not found"


class InvalidStatusTransition(VaultError, ValueError):
    """Raised when an owner requests a status change that is not allowed."""
