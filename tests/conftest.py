"""Shared fixtures for the credential vault tests."""
import pytest
from datetime import datetime, timedelta, timezone

from navigator_keyvault.vault import (
    CredentialCipher,
    CredentialRecord,
    CredentialStatus,
    CredentialVault,
    KeyDerivationMode,
    MemoryCredentialStore,
    VaultConfig,
)

SERVICE_SECRET = "3f9c1a7be2d44c0e8a51f6b29d7e03c4a8b1e5f09c2d7a6b4e8f1c3d5a7b9e0f"

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def cipher():
    """One cipher per test session, the service key is derived once."""
    return CredentialCipher(SERVICE_SECRET)


@pytest.fixture
def config():
    return VaultConfig(service_secret=SERVICE_SECRET, environment="testing")


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def vault(cipher, store):
    return CredentialVault(cipher, store)


@pytest.fixture
def make_record():
    """Factory for records with a fake ciphertext and a given age."""
    def _make(
        days_old: int = 0,
        status: CredentialStatus = CredentialStatus.ACTIVE,
        interval: int = 90,
        owner_id: str = "user-1",
        now: datetime = NOW,
    ) -> CredentialRecord:
        rotated = now - timedelta(days=days_old)
        return CredentialRecord(
            owner_id=owner_id,
            name=f"key-{days_old}d",
            service="openai",
            encrypted_key="ss1:00112233445566778899aabb:deadbeef",
            key_derivation_mode=KeyDerivationMode.SERVICE_SECRET,
            rotation_interval_days=interval,
            status=status,
            created_at=rotated,
            updated_at=rotated,
            last_rotated_at=rotated,
        )
    return _make
