"""
Vault Crypto Core — Key derivation, AEAD primitives and ciphertext framing.

Two key-derivation modes share one AEAD cipher (AES-256-GCM):
- Service secret: scrypt(service_secret, fixed salt) → process-lifetime key
- User passphrase: PBKDF2-HMAC-SHA512(passphrase, random salt, 100k) → per-credential key

Stored framing (colon-delimited hex segments, first segment is the tag):
    ss1:<nonce>:<ciphertext+tag>           service secret, AES-256-GCM
    up1:<salt>:<nonce>:<ciphertext+tag>    user passphrase, AES-256-GCM
    <iv>:<ciphertext>                      legacy service secret, AES-256-CBC

Legacy records were written with scrypt(secret, "salt") fed through
OpenSSL's EVP_BytesToKey (MD5, no salt) to get the CBC key and iv. The
stored iv segment was never used by that writer and is ignored here.

The framing tag is also bound as associated data, so a ciphertext cannot be
replayed under a different mode.

Security Note:
    Never log plaintext, passphrases, derived keys or ciphertext values.
"""
import os
import secrets
from enum import Enum
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .exceptions import InvalidCiphertextFormat

KEY_LENGTH = 32  # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
GCM_TAG_SIZE = 16
CBC_IV_SIZE = 16
CBC_BLOCK_SIZE = 16
SALT_SIZE = 16

PBKDF2_ITERATIONS = 100_000

SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1
# Public constant: the service secret is the only secret input.
SERVICE_KEY_SALT = b"navigator-keyvault/service-secret"
LEGACY_KEY_SALT = b"salt"

SERVICE_SECRET_TAG = "ss1"
PASSPHRASE_TAG = "up1"
_SEPARATOR = ":"


class KeyDerivationMode(str, Enum):
    """Which key material a ciphertext was produced with."""

    SERVICE_SECRET = "service_secret"
    USER_PASSPHRASE = "user_passphrase"


class CipherScheme(str, Enum):
    """Block cipher construction used for a ciphertext."""

    AES_256_GCM = "aes-256-gcm"
    AES_256_CBC = "aes-256-cbc"  # legacy, decrypt only


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_service_key(service_secret: str) -> bytes:
    """Derive the service-wide 32-byte key with scrypt.

    The salt is fixed so the same secret always yields the same key; it is
    computed once per process by the cipher.

    Args:
        service_secret: Configured service-wide secret.

    Returns:
        32-byte derived key.
    """
    kdf = Scrypt(
        salt=SERVICE_KEY_SALT,
        length=KEY_LENGTH,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(service_secret.encode("utf-8"))


def derive_passphrase_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a per-credential 32-byte key with PBKDF2-HMAC-SHA512.

    Args:
        passphrase: Caller supplied passphrase, never stored.
        salt: Random salt stored alongside the ciphertext.

    Returns:
        32-byte derived key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def evp_bytes_to_key(
    password: bytes, key_length: int, iv_length: int,
) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5, a single round and no salt.

    Returns:
        (key, iv) of the requested lengths.
    """
    derived = b""
    block = b""
    while len(derived) < key_length + iv_length:
        digest = hashes.Hash(hashes.MD5())
        digest.update(block + password)
        block = digest.finalize()
        derived += block
    return derived[:key_length], derived[key_length:key_length + iv_length]


def derive_legacy_key(service_secret: str) -> tuple[bytes, bytes]:
    """Derive the AES-256-CBC key and iv legacy records were written with.

    Decrypt only; nothing new is ever encrypted under this key.

    Returns:
        (key, iv) for AES-256-CBC.
    """
    kdf = Scrypt(
        salt=LEGACY_KEY_SALT,
        length=KEY_LENGTH,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    secret_key = kdf.derive(service_secret.encode("utf-8"))
    return evp_bytes_to_key(secret_key, KEY_LENGTH, CBC_IV_SIZE)


# ---------------------------------------------------------------------------
# Cipher primitives
# ---------------------------------------------------------------------------

def aead_encrypt(key: bytes, plaintext: bytes, aad: bytes) -> tuple[bytes, bytes]:
    """Encrypt with AES-256-GCM under a fresh random nonce.

    The nonce is always generated here; callers cannot supply one.

    Returns:
        Tuple of (nonce, ciphertext with appended GCM tag).
    """
    nonce = os.urandom(NONCE_SIZE)
    ct = AESGCM(key).encrypt(nonce, plaintext, aad)
    return nonce, ct


def aead_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
    """Decrypt AES-256-GCM ciphertext.

    Raises:
        ValueError: If the nonce or ciphertext has the wrong length.
        cryptography.exceptions.InvalidTag: If authentication fails.
    """
    if len(nonce) != NONCE_SIZE:
        raise ValueError(
            f"nonce must be {NONCE_SIZE} bytes, got {len(nonce)}"
        )
    if len(ciphertext) < GCM_TAG_SIZE:
        raise ValueError(
            f"ciphertext too short: {len(ciphertext)} bytes "
            f"(minimum {GCM_TAG_SIZE})"
        )
    return AESGCM(key).decrypt(nonce, ciphertext, aad)


def cbc_decrypt(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    """Decrypt legacy AES-256-CBC ciphertext with PKCS7 padding.

    Raises:
        ValueError: On a malformed iv, a ciphertext that is not a whole
            number of blocks, or invalid padding.
    """
    if len(iv) != CBC_IV_SIZE:
        raise ValueError(f"iv must be {CBC_IV_SIZE} bytes, got {len(iv)}")
    if not ciphertext or len(ciphertext) % CBC_BLOCK_SIZE:
        raise ValueError(
            f"ciphertext length {len(ciphertext)} is not a multiple "
            f"of {CBC_BLOCK_SIZE}"
        )
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(CBC_BLOCK_SIZE * 8).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def random_hex(byte_length: int = 32) -> str:
    """Return byte_length random bytes from the OS CSPRNG as hex."""
    if byte_length < 1:
        raise ValueError("byte_length must be a positive integer")
    return secrets.token_hex(byte_length)


def sha256_hex(data: str | bytes) -> str:
    """SHA-256 digest of data as hex, for integrity checks only."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data)
    return digest.finalize().hex()


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

def mode_aad(mode: KeyDerivationMode) -> bytes:
    """Associated data bound into the GCM tag for a given mode."""
    if mode is KeyDerivationMode.USER_PASSPHRASE:
        return PASSPHRASE_TAG.encode("ascii")
    return SERVICE_SECRET_TAG.encode("ascii")


@dataclass(frozen=True)
class EncryptedSecret:
    """Ciphertext plus the metadata needed to ever decrypt it again.

    ``salt`` is set only for USER_PASSPHRASE mode.
    """

    mode: KeyDerivationMode
    ciphertext: bytes
    iv: bytes
    salt: Optional[bytes] = None
    scheme: CipherScheme = CipherScheme.AES_256_GCM

    def __repr__(self) -> str:
        return (
            f"<EncryptedSecret mode={self.mode.value} "
            f"scheme={self.scheme.value} size={len(self.ciphertext)}>"
        )

    @property
    def is_legacy(self) -> bool:
        return self.scheme is CipherScheme.AES_256_CBC

    def pack(self) -> str:
        """Serialize to the colon-delimited storage format."""
        if self.is_legacy:
            return _SEPARATOR.join((self.iv.hex(), self.ciphertext.hex()))
        if self.mode is KeyDerivationMode.USER_PASSPHRASE:
            if not self.salt:
                raise ValueError("passphrase mode requires a salt")
            return _SEPARATOR.join((
                PASSPHRASE_TAG,
                self.salt.hex(),
                self.iv.hex(),
                self.ciphertext.hex(),
            ))
        return _SEPARATOR.join((
            SERVICE_SECRET_TAG, self.iv.hex(), self.ciphertext.hex(),
        ))

    @classmethod
    def unpack(cls, packed: str) -> "EncryptedSecret":
        """Parse the storage format back into an EncryptedSecret.

        Raises:
            InvalidCiphertextFormat: On an unknown tag, a wrong segment
                count, or a segment that is empty or not valid hex.
        """
        if not packed or not isinstance(packed, str):
            raise InvalidCiphertextFormat("Empty encrypted credential")
        segments = packed.split(_SEPARATOR)
        tag = segments[0]
        if tag == SERVICE_SECRET_TAG:
            _expect_segments(segments, 3)
            iv, ct = _from_hex(segments[1:])
            return cls(KeyDerivationMode.SERVICE_SECRET, ct, iv)
        if tag == PASSPHRASE_TAG:
            _expect_segments(segments, 4)
            salt, iv, ct = _from_hex(segments[1:])
            return cls(KeyDerivationMode.USER_PASSPHRASE, ct, iv, salt=salt)
        # untagged records predate the AEAD formats
        _expect_segments(segments, 2)
        iv, ct = _from_hex(segments)
        return cls(
            KeyDerivationMode.SERVICE_SECRET, ct, iv,
            scheme=CipherScheme.AES_256_CBC,
        )

    @property
    def aad(self) -> bytes:
        return mode_aad(self.mode)


def _expect_segments(segments: list[str], count: int) -> None:
    if len(segments) != count:
        raise InvalidCiphertextFormat(
            f"Invalid encrypted credential format: expected {count} "
            f"segments, got {len(segments)}"
        )


def _from_hex(segments: list[str]) -> list[bytes]:
    try:
        values = [bytes.fromhex(s) for s in segments]
    except ValueError as err:
        raise InvalidCiphertextFormat(
            "Invalid encrypted credential format: non-hex segment"
        ) from err
    if not all(values):
        raise InvalidCiphertextFormat(
            "Invalid encrypted credential format: empty segment"
        )
    return values
