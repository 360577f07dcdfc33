"""Tests for the legacy CBC to GCM migration job."""
import threading

import pytest

from navigator_keyvault.vault import (
    CredentialCipher,
    CredentialRecord,
    KeyDerivationMode,
    MemoryCredentialStore,
    migrate_legacy_credentials,
)

from .conftest import NOW, SERVICE_SECRET
from .test_cipher import LEGACY_RECORD, legacy_encrypt


class ThreadRecordingCipher(CredentialCipher):
    """Cipher that records which thread each call ran on."""

    def __init__(self, service_secret):
        super().__init__(service_secret)
        self.threads = []

    def decrypt_secret(self, secret, passphrase=None):
        self.threads.append(threading.get_ident())
        return super().decrypt_secret(secret, passphrase)

    def encrypt(self, plaintext, passphrase=None):
        self.threads.append(threading.get_ident())
        return super().encrypt(plaintext, passphrase)


def legacy_record(value: str, packed: str = None) -> CredentialRecord:
    return CredentialRecord(
        owner_id="user-1",
        name=f"legacy {value}",
        service="openai",
        encrypted_key=packed or legacy_encrypt(value),
        key_derivation_mode=KeyDerivationMode.SERVICE_SECRET,
        last_rotated_at=NOW,
    )


class TestMigrateLegacyCredentials:
    """Tests for upgrading untagged records in place."""

    @pytest.mark.asyncio
    async def test_migrates_legacy_records(self, cipher):
        """Test legacy records are re-encrypted and still decrypt."""
        records = [legacy_record(f"sk-legacy-{i}") for i in range(5)]
        store = MemoryCredentialStore(records)

        stats = await migrate_legacy_credentials(store, cipher, batch_size=2)

        assert stats == {"total": 5, "migrated": 5, "errors": 0, "skipped": 0}
        for i, record in enumerate(records):
            stored = await store.get(record.id)
            assert stored.encrypted_key.startswith("ss1:")
            assert cipher.decrypt(stored.encrypted_key) == f"sk-legacy-{i}"

    @pytest.mark.asyncio
    async def test_rotation_timestamp_unchanged(self, cipher):
        """Test migration does not reset the rotation clock."""
        record = legacy_record("sk-legacy")
        store = MemoryCredentialStore([record])
        await migrate_legacy_credentials(store, cipher)
        assert (await store.get(record.id)).last_rotated_at == NOW

    @pytest.mark.asyncio
    async def test_migrates_record_from_earlier_release(self, cipher):
        """Test a record written by the Node.js service is upgraded."""
        record = legacy_record("sk-test-abc123", packed=LEGACY_RECORD)
        store = MemoryCredentialStore([record])

        stats = await migrate_legacy_credentials(store, cipher)

        assert stats["migrated"] == 1
        stored = await store.get(record.id)
        assert stored.encrypted_key.startswith("ss1:")
        assert cipher.decrypt(stored.encrypted_key) == "sk-test-abc123"

    @pytest.mark.asyncio
    async def test_cipher_work_off_event_loop(self):
        """Test decrypt and encrypt run in worker threads."""
        loop_thread = threading.get_ident()
        cipher = ThreadRecordingCipher(SERVICE_SECRET)
        store = MemoryCredentialStore([legacy_record("sk-legacy")])

        await migrate_legacy_credentials(store, cipher)

        assert len(cipher.threads) == 2
        assert loop_thread not in cipher.threads

    @pytest.mark.asyncio
    async def test_skips_tagged_and_passphrase_records(self, cipher, vault, store):
        """Test only untagged service-secret records are touched."""
        modern = await vault.create("user-1", "modern", "openai", "sk-new")
        protected = await vault.create(
            "user-1", "protected", "openai", "sk-new", passphrase="correct-horse",
        )
        before = (await store.get(modern["id"])).encrypted_key

        stats = await migrate_legacy_credentials(store, cipher)

        assert stats == {"total": 1, "migrated": 0, "errors": 0, "skipped": 1}
        assert (await store.get(modern["id"])).encrypted_key == before
        assert (await store.get(protected["id"])).encrypted_key.startswith("up1:")

    @pytest.mark.asyncio
    async def test_corrupt_record_counted(self, cipher):
        """Test an undecryptable record is left alone and counted."""
        corrupt = legacy_record("x", packed="00" * 16 + ":" + "ab" * 15)
        healthy = legacy_record("sk-legacy")
        store = MemoryCredentialStore([corrupt, healthy])

        stats = await migrate_legacy_credentials(store, cipher)

        assert stats["errors"] == 1
        assert stats["migrated"] == 1
        assert (await store.get(corrupt.id)).encrypted_key == corrupt.encrypted_key

    @pytest.mark.asyncio
    async def test_idempotent(self, cipher):
        store = MemoryCredentialStore([legacy_record("sk-legacy")])
        await migrate_legacy_credentials(store, cipher)
        second = await migrate_legacy_credentials(store, cipher)
        assert second == {"total": 1, "migrated": 0, "errors": 0, "skipped": 1}

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, cipher, store):
        with pytest.raises(ValueError):
            await migrate_legacy_credentials(store, cipher, batch_size=0)
