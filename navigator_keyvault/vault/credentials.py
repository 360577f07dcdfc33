"""
CredentialVault — Owner-scoped credential operations for the API layer.

Provides the public API used by request handlers:
- ``create(...)`` — encrypt and store a new credential
- ``list_credentials(owner_id)`` / ``get(owner_id, id)`` — metadata only, never ciphertext
- ``reveal(owner_id, id, passphrase)`` — decrypt on explicit request
- ``regenerate(owner_id, id, passphrase)`` — replace with a random value
- ``rotate(owner_id, id, secret, passphrase)`` — replace with a new value
- ``set_status(owner_id, id, status)`` — owner active/inactive toggle
- ``update_metadata(owner_id, id, **fields)`` / ``delete(owner_id, id)``

Security Note:
    Never log plaintext, passphrases or ciphertext values. Only log
    credential ids, owners and operations. Plaintext is returned only by
    ``reveal`` and ``regenerate``, to the immediate caller.
"""
import asyncio
import logging
from typing import Any, Optional

from .cipher import CredentialCipher
from .crypto import KeyDerivationMode
from .exceptions import CredentialNotFound, InvalidStatusTransition
from .models import CredentialRecord, CredentialStatus, utcnow
from .store import CredentialStore

logger = logging.getLogger("navigator.keyvault")

# Fields an owner may change without touching the secret.
_EDITABLE_FIELDS = frozenset({
    "name", "description", "environment", "tags", "rotation_interval_days",
})

_OWNER_STATUSES = (CredentialStatus.ACTIVE, CredentialStatus.INACTIVE)


class CredentialVault:
    """Credential operations bound to a cipher and a store.

    Cipher calls run in a worker thread: passphrase key derivation is
    deliberately slow and must not block the event loop.
    """

    def __init__(
        self,
        cipher: CredentialCipher,
        store: CredentialStore,
        default_rotation_interval_days: int = 90,
    ):
        self._cipher = cipher
        self._store = store
        self._default_interval = default_rotation_interval_days

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_owned(self, owner_id: str, credential_id: str) -> CredentialRecord:
        """Fetch a record, hiding records that belong to other owners.

        Raises:
            CredentialNotFound: If the id is unknown or not owned by owner_id.
        """
        record = await self._store.get(credential_id)
        if record is None or record.owner_id != owner_id:
            raise CredentialNotFound(f"Credential {credential_id} not found")
        return record

    async def _encrypt(
        self, secret: str, passphrase: Optional[str],
    ) -> tuple[str, KeyDerivationMode]:
        packed = await asyncio.to_thread(self._cipher.encrypt, secret, passphrase)
        mode = (
            KeyDerivationMode.SERVICE_SECRET
            if passphrase is None
            else KeyDerivationMode.USER_PASSPHRASE
        )
        return packed, mode

    def _audit(self, record: CredentialRecord, operation: str) -> None:
        logger.info(
            "Credential %s: owner=%s id=%s mode=%s",
            operation, record.owner_id, record.id,
            record.key_derivation_mode.value,
        )

    async def _replace_secret(
        self,
        record: CredentialRecord,
        secret: str,
        passphrase: Optional[str],
        operation: str,
    ) -> CredentialRecord:
        """Re-encrypt a record with a new value and mark it rotated.

        An expired credential returns to active; an inactive one stays
        inactive. A passphrase-protected credential needs a passphrase, so
        it is never silently downgraded to service-secret mode.
        """
        if (
            record.key_derivation_mode is KeyDerivationMode.USER_PASSPHRASE
            and passphrase is None
        ):
            raise ValueError(
                "A passphrase is required to re-encrypt a passphrase-protected credential"
            )
        packed, mode = await self._encrypt(secret, passphrase)
        now = utcnow()
        status = record.status
        if status is CredentialStatus.EXPIRED:
            status = CredentialStatus.ACTIVE
        updated = record.model_copy(update={
            "encrypted_key": packed,
            "key_derivation_mode": mode,
            "status": status,
            "is_active": status is CredentialStatus.ACTIVE,
            "updated_at": now,
            "last_rotated_at": now,
        })
        await self._store.update(updated)
        self._audit(updated, operation)
        return updated

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        name: str,
        service: str,
        secret: str,
        passphrase: Optional[str] = None,
        **metadata: Any,
    ) -> dict[str, Any]:
        """Encrypt and store a new credential.

        Args:
            owner_id: Owner of the credential.
            name: Display name.
            service: Third-party service, e.g. ``openai``.
            secret: Plaintext API key; it is not retained.
            passphrase: Optional owner passphrase. When given the credential
                uses passphrase mode, otherwise service-secret mode.
            **metadata: description, environment, tags, rotation_interval_days.

        Returns:
            Public projection of the stored record.
        """
        unknown = set(metadata) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)}")
        metadata.setdefault("rotation_interval_days", self._default_interval)
        packed, mode = await self._encrypt(secret, passphrase)
        record = CredentialRecord(
            owner_id=owner_id,
            name=name,
            service=service,
            encrypted_key=packed,
            key_derivation_mode=mode,
            **metadata,
        )
        await self._store.insert(record)
        self._audit(record, "create")
        return record.to_public()

    async def list_credentials(self, owner_id: str) -> list[dict[str, Any]]:
        """Return metadata for all of an owner's credentials."""
        records = await self._store.list_by_owner(owner_id)
        return [r.to_public() for r in records]

    async def get(self, owner_id: str, credential_id: str) -> dict[str, Any]:
        """Return metadata for one credential."""
        record = await self._get_owned(owner_id, credential_id)
        return record.to_public()

    async def reveal(
        self,
        owner_id: str,
        credential_id: str,
        passphrase: Optional[str] = None,
    ) -> str:
        """Decrypt and return a credential value.

        Raises:
            CredentialNotFound: If the credential is not the owner's.
            DecryptionError: On a wrong passphrase or corrupted data.
        """
        record = await self._get_owned(owner_id, credential_id)
        plaintext = await asyncio.to_thread(
            self._cipher.decrypt, record.encrypted_key, passphrase,
        )
        self._audit(record, "reveal")
        return plaintext

    async def regenerate(
        self,
        owner_id: str,
        credential_id: str,
        passphrase: Optional[str] = None,
        byte_length: int = 32,
    ) -> str:
        """Replace a credential with a new random value.

        Returns:
            The new plaintext value. It cannot be retrieved again without
            ``reveal``.
        """
        record = await self._get_owned(owner_id, credential_id)
        secret = self._cipher.generate_random_secret(byte_length)
        await self._replace_secret(record, secret, passphrase, "regenerate")
        return secret

    async def rotate(
        self,
        owner_id: str,
        credential_id: str,
        secret: str,
        passphrase: Optional[str] = None,
    ) -> dict[str, Any]:
        """Replace a credential with an owner-supplied new value.

        This is the only way an expired credential becomes active again.
        """
        record = await self._get_owned(owner_id, credential_id)
        updated = await self._replace_secret(record, secret, passphrase, "rotate")
        return updated.to_public()

    async def set_status(
        self,
        owner_id: str,
        credential_id: str,
        status: CredentialStatus | str,
    ) -> dict[str, Any]:
        """Toggle a credential between active and inactive.

        Raises:
            InvalidStatusTransition: If the target is ``expired`` or the
                credential is already expired.
        """
        status = CredentialStatus(status)
        if status not in _OWNER_STATUSES:
            raise InvalidStatusTransition(
                f"Owners cannot set status to {status.value}"
            )
        record = await self._get_owned(owner_id, credential_id)
        if record.status is CredentialStatus.EXPIRED:
            raise InvalidStatusTransition(
                "Expired credentials must be rotated before they can be reactivated"
            )
        if record.status is status:
            return record.to_public()
        updated = record.with_status(status)
        await self._store.update(updated)
        self._audit(updated, f"status:{status.value}")
        return updated.to_public()

    async def update_metadata(
        self,
        owner_id: str,
        credential_id: str,
        **fields: Any,
    ) -> dict[str, Any]:
        """Update non-secret fields of a credential.

        Raises:
            ValueError: For fields that are not editable.
            pydantic.ValidationError: For invalid values.
        """
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {sorted(unknown)}")
        record = await self._get_owned(owner_id, credential_id)
        data = record.model_dump()
        data.update(fields)
        data["updated_at"] = utcnow()
        updated = CredentialRecord.model_validate(data)
        await self._store.update(updated)
        self._audit(updated, "update")
        return updated.to_public()

    async def delete(self, owner_id: str, credential_id: str) -> None:
        """Delete a credential permanently."""
        record = await self._get_owned(owner_id, credential_id)
        await self._store.delete(record.id)
        self._audit(record, "delete")
