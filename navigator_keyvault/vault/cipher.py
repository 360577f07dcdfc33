"""
CredentialCipher — Encrypt and decrypt third-party API credentials.

Public API:
- ``encrypt_with_service_secret`` / ``decrypt_with_service_secret``
- ``encrypt_with_passphrase`` / ``decrypt_with_passphrase``
- ``encrypt`` / ``decrypt`` — same operations over the packed storage string
- ``generate_random_secret`` / ``hash``

One instance is built at process start and handed to whoever needs it. The
service and legacy keys are derived once in the constructor; after that the
instance holds no mutable state and can be shared across threads and tasks.

Security Note:
    Every decryption failure surfaces as DecryptionError with the same
    message. Logs record the mode and exception type only.
"""
import os
import logging
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from pydantic import SecretStr

from .config import VaultConfig
from .crypto import (
    CBC_IV_SIZE,
    CipherScheme,
    EncryptedSecret,
    KeyDerivationMode,
    SALT_SIZE,
    aead_decrypt,
    aead_encrypt,
    cbc_decrypt,
    derive_legacy_key,
    derive_passphrase_key,
    derive_service_key,
    mode_aad,
    random_hex,
    sha256_hex,
)
from .exceptions import ConfigurationError, DecryptionError, InvalidCiphertextFormat

logger = logging.getLogger("navigator.keyvault")


class CredentialCipher:
    """Authenticated encryption of credential strings.

    New ciphertexts always use AES-256-GCM. Legacy AES-256-CBC records
    produced with the service secret by earlier releases stay decryptable.
    """

    def __init__(self, service_secret: Union[str, SecretStr]):
        if isinstance(service_secret, SecretStr):
            service_secret = service_secret.get_secret_value()
        if not service_secret:
            raise ConfigurationError("CredentialCipher requires a service secret")
        self._service_key = derive_service_key(service_secret)
        self._legacy_key, self._legacy_iv = derive_legacy_key(service_secret)

    def __repr__(self) -> str:
        return "<CredentialCipher>"

    @classmethod
    def from_config(cls, config: VaultConfig) -> "CredentialCipher":
        return cls(config.service_secret)

    # ------------------------------------------------------------------
    # Service-secret mode
    # ------------------------------------------------------------------

    def encrypt_with_service_secret(self, plaintext: str) -> EncryptedSecret:
        """Encrypt plaintext with the service-wide key.

        Args:
            plaintext: Credential value to protect.

        Returns:
            EncryptedSecret carrying ciphertext and a fresh nonce.

        Raises:
            ValueError: If plaintext is empty.
        """
        data = _encode_plaintext(plaintext)
        iv, ct = aead_encrypt(
            self._service_key, data, mode_aad(KeyDerivationMode.SERVICE_SECRET),
        )
        return EncryptedSecret(KeyDerivationMode.SERVICE_SECRET, ct, iv)

    def decrypt_with_service_secret(
        self,
        ciphertext: bytes,
        iv: bytes,
        scheme: CipherScheme = CipherScheme.AES_256_GCM,
    ) -> str:
        """Decrypt a ciphertext produced with the service-wide key.

        Args:
            ciphertext: Encrypted bytes.
            iv: Nonce (GCM), or the stored legacy iv segment, which is
                length-checked only (legacy CBC).
            scheme: Construction the ciphertext was produced with.

        Returns:
            Decrypted credential string.

        Raises:
            DecryptionError: On a malformed iv, a ciphertext that is not a
                whole number of blocks, bad padding or failed authentication.
        """
        secret = EncryptedSecret(
            KeyDerivationMode.SERVICE_SECRET, ciphertext, iv, scheme=scheme,
        )
        try:
            if secret.is_legacy:
                if len(iv) != CBC_IV_SIZE:
                    raise ValueError(
                        f"iv must be {CBC_IV_SIZE} bytes, got {len(iv)}"
                    )
                # the stored iv was never fed to the legacy cipher
                data = cbc_decrypt(self._legacy_key, self._legacy_iv, ciphertext)
            else:
                data = aead_decrypt(self._service_key, iv, ciphertext, secret.aad)
            return _decode_plaintext(data)
        except (InvalidTag, ValueError) as err:
            logger.warning(
                "Decryption failed: mode=%s scheme=%s error=%s",
                secret.mode.value, scheme.value, type(err).__name__,
            )
            raise DecryptionError() from None

    # ------------------------------------------------------------------
    # User-passphrase mode
    # ------------------------------------------------------------------

    def encrypt_with_passphrase(self, plaintext: str, passphrase: str) -> EncryptedSecret:
        """Encrypt plaintext under a key derived from the owner's passphrase.

        A fresh salt and nonce are generated for every call, so the same
        inputs never produce the same ciphertext.

        Args:
            plaintext: Credential value to protect.
            passphrase: Owner passphrase; it is not retained.

        Returns:
            EncryptedSecret carrying ciphertext, nonce and salt.

        Raises:
            ValueError: If plaintext or passphrase is empty.
        """
        data = _encode_plaintext(plaintext)
        if not passphrase:
            raise ValueError("Passphrase cannot be empty")
        salt = os.urandom(SALT_SIZE)
        key = derive_passphrase_key(passphrase, salt)
        iv, ct = aead_encrypt(
            key, data, mode_aad(KeyDerivationMode.USER_PASSPHRASE),
        )
        return EncryptedSecret(KeyDerivationMode.USER_PASSPHRASE, ct, iv, salt=salt)

    def decrypt_with_passphrase(
        self,
        ciphertext: bytes,
        iv: bytes,
        salt: bytes,
        passphrase: str,
    ) -> str:
        """Re-derive the key from passphrase and salt, then decrypt.

        A wrong passphrase and a corrupted ciphertext raise the same error.

        Raises:
            DecryptionError: If the key is wrong or any input was altered.
        """
        secret = EncryptedSecret(
            KeyDerivationMode.USER_PASSPHRASE, ciphertext, iv, salt=salt,
        )
        if not passphrase or not salt:
            logger.warning(
                "Decryption failed: mode=%s error=%s",
                secret.mode.value,
                "MissingPassphrase" if not passphrase else "MissingSalt",
            )
            raise DecryptionError()
        try:
            key = derive_passphrase_key(passphrase, salt)
            data = aead_decrypt(key, iv, ciphertext, secret.aad)
            return _decode_plaintext(data)
        except (InvalidTag, ValueError) as err:
            logger.warning(
                "Decryption failed: mode=%s error=%s",
                secret.mode.value, type(err).__name__,
            )
            raise DecryptionError() from None

    # ------------------------------------------------------------------
    # Packed storage format
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str, passphrase: Optional[str] = None) -> str:
        """Encrypt and pack for storage.

        Uses passphrase mode when a passphrase is given, service-secret
        mode otherwise.
        """
        if passphrase is None:
            secret = self.encrypt_with_service_secret(plaintext)
        else:
            secret = self.encrypt_with_passphrase(plaintext, passphrase)
        return secret.pack()

    def decrypt(self, packed: str, passphrase: Optional[str] = None) -> str:
        """Unpack a stored credential and decrypt it with the matching mode.

        Raises:
            InvalidCiphertextFormat: If the framing cannot be parsed.
            DecryptionError: If decryption fails.
        """
        try:
            secret = EncryptedSecret.unpack(packed)
        except InvalidCiphertextFormat as err:
            logger.error("Stored credential has invalid framing: %s", err)
            raise
        return self.decrypt_secret(secret, passphrase)

    def decrypt_secret(
        self,
        secret: EncryptedSecret,
        passphrase: Optional[str] = None,
    ) -> str:
        """Dispatch decryption on the secret's key-derivation mode."""
        if secret.mode is KeyDerivationMode.USER_PASSPHRASE:
            return self.decrypt_with_passphrase(
                secret.ciphertext, secret.iv, secret.salt, passphrase,
            )
        return self.decrypt_with_service_secret(
            secret.ciphertext, secret.iv, secret.scheme,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def generate_random_secret(self, byte_length: int = 32) -> str:
        """Return a new random credential value as a hex string."""
        return random_hex(byte_length)

    def hash(self, data: Union[str, bytes]) -> str:
        """SHA-256 hex digest for integrity checks."""
        return sha256_hex(data)


def _encode_plaintext(plaintext: str) -> bytes:
    if not plaintext:
        raise ValueError("Cannot encrypt an empty credential")
    return plaintext.encode("utf-8")


def _decode_plaintext(data: bytes) -> str:
    # UnicodeDecodeError is a ValueError; callers map it to DecryptionError
    return data.decode("utf-8")
