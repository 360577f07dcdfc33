"""
Legacy Migration — Re-encrypt AES-256-CBC credentials with AES-256-GCM.

Credentials written before the tagged framing existed are stored as
``<iv>:<ciphertext>`` under AES-256-CBC with the legacy key. They stay
decryptable indefinitely; this batch job upgrades them in place when an
operator runs it. Records already in a tagged format are skipped, so the
job is idempotent.

Re-encryption keeps the credential value, so ``last_rotated_at`` is left
untouched and rotation policy is unaffected.

Security Note:
    Plaintext exists in memory only during re-encryption of each record.
    Never log plaintext or ciphertext values.
"""
import asyncio
import logging

from .cipher import CredentialCipher
from .crypto import EncryptedSecret, KeyDerivationMode
from .models import utcnow
from .store import CredentialStore

logger = logging.getLogger("navigator.keyvault")


async def migrate_legacy_credentials(
    store: CredentialStore,
    cipher: CredentialCipher,
    batch_size: int = 100,
) -> dict:
    """Upgrade every legacy service-secret credential to the AEAD format.

    Args:
        store: Credential store to scan and update.
        cipher: Cipher configured with the same service secret.
        batch_size: Number of records fetched per page.

    Returns:
        Stats dict with keys: total, migrated, errors, skipped.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    stats = {"total": 0, "migrated": 0, "errors": 0, "skipped": 0}
    offset = 0

    logger.info(
        "Starting legacy credential migration (batch_size=%d)", batch_size,
    )

    while True:
        records = await store.list_by_mode(
            KeyDerivationMode.SERVICE_SECRET, batch_size, offset,
        )
        if not records:
            break

        batch_num = (offset // batch_size) + 1
        logger.info("Processing batch %d (%d records)", batch_num, len(records))

        for record in records:
            stats["total"] += 1
            try:
                secret = EncryptedSecret.unpack(record.encrypted_key)
                if not secret.is_legacy:
                    stats["skipped"] += 1
                    continue
                plaintext = await asyncio.to_thread(cipher.decrypt_secret, secret)
                packed = await asyncio.to_thread(cipher.encrypt, plaintext)
                await store.update(record.model_copy(update={
                    "encrypted_key": packed,
                    "updated_at": utcnow(),
                }))
                stats["migrated"] += 1
            except Exception as err:
                logger.error(
                    "Error migrating credential id=%s: %s (%s)",
                    record.id, type(err).__name__, err,
                )
                stats["errors"] += 1

        # migrated records keep their mode, so offsets stay stable
        offset += len(records)

    logger.info("Legacy credential migration complete: %s", stats)
    return stats
