"""
Credential Stores — Persistence adapters consumed by the vault.

``CredentialStore`` is the narrow interface the policy engine and the
credential service need. Two implementations ship here:

- ``MemoryCredentialStore``: in-process dict, for development and tests.
- ``PgCredentialStore``: asyncpg-compatible pool, table ``keyvault.credentials``.

Stores only ever see packed ciphertext; they never encrypt or decrypt.
"""
import logging
from typing import Any, Optional, Protocol
from datetime import datetime

from .crypto import KeyDerivationMode
from .exceptions import CredentialNotFound
from .models import CredentialRecord, CredentialStatus, utcnow

logger = logging.getLogger("navigator.keyvault")


class CredentialStore(Protocol):
    """Storage operations used by the vault."""

    async def get(self, credential_id: str) -> Optional[CredentialRecord]:
        ...

    async def list_by_owner(self, owner_id: str) -> list[CredentialRecord]:
        ...

    async def list_active(self) -> list[CredentialRecord]:
        ...

    async def list_by_mode(
        self, mode: KeyDerivationMode, limit: int, offset: int,
    ) -> list[CredentialRecord]:
        ...

    async def insert(self, record: CredentialRecord) -> None:
        ...

    async def update(self, record: CredentialRecord) -> None:
        ...

    async def mark_expired(
        self, credential_id: str, now: Optional[datetime] = None,
    ) -> bool:
        ...

    async def delete(self, credential_id: str) -> bool:
        ...


class MemoryCredentialStore:
    """Dict-backed store. Records are copied in and out."""

    def __init__(self, records: Optional[list[CredentialRecord]] = None):
        self._records: dict[str, CredentialRecord] = {}
        for record in records or ():
            self._records[record.id] = record.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, credential_id: str) -> Optional[CredentialRecord]:
        record = self._records.get(credential_id)
        return record.model_copy(deep=True) if record else None

    async def list_by_owner(self, owner_id: str) -> list[CredentialRecord]:
        records = [r for r in self._records.values() if r.owner_id == owner_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in records]

    async def list_active(self) -> list[CredentialRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.status is CredentialStatus.ACTIVE
        ]

    async def list_by_mode(
        self, mode: KeyDerivationMode, limit: int, offset: int,
    ) -> list[CredentialRecord]:
        records = sorted(
            (r for r in self._records.values() if r.key_derivation_mode is mode),
            key=lambda r: r.id,
        )
        return [r.model_copy(deep=True) for r in records[offset:offset + limit]]

    async def insert(self, record: CredentialRecord) -> None:
        if record.id in self._records:
            raise ValueError(f"Credential {record.id} already exists")
        self._records[record.id] = record.model_copy(deep=True)

    async def update(self, record: CredentialRecord) -> None:
        if record.id not in self._records:
            raise CredentialNotFound(f"Credential {record.id} not found")
        self._records[record.id] = record.model_copy(deep=True)

    async def mark_expired(
        self, credential_id: str, now: Optional[datetime] = None,
    ) -> bool:
        record = self._records.get(credential_id)
        if record is None or record.status is not CredentialStatus.ACTIVE:
            return False
        self._records[credential_id] = record.with_status(
            CredentialStatus.EXPIRED, now,
        )
        return True

    async def delete(self, credential_id: str) -> bool:
        return self._records.pop(credential_id, None) is not None


# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_COLUMNS = """
id, owner_id, name, service, description, environment, tags,
encrypted_key, key_derivation_mode, rotation_interval_days,
status, is_active, created_at, updated_at, last_rotated_at
"""

_SELECT_BY_ID = f"""
SELECT {_COLUMNS}
FROM keyvault.credentials
WHERE id = $1
"""

_SELECT_BY_OWNER = f"""
SELECT {_COLUMNS}
FROM keyvault.credentials
WHERE owner_id = $1
ORDER BY created_at DESC
"""

_SELECT_ACTIVE = f"""
SELECT {_COLUMNS}
FROM keyvault.credentials
WHERE status = 'active'
"""

_SELECT_BY_MODE = f"""
SELECT {_COLUMNS}
FROM keyvault.credentials
WHERE key_derivation_mode = $1
ORDER BY id
LIMIT $2
OFFSET $3
"""

_INSERT_CREDENTIAL = """
INSERT INTO keyvault.credentials (
    id, owner_id, name, service, description, environment, tags,
    encrypted_key, key_derivation_mode, rotation_interval_days,
    status, is_active, created_at, updated_at, last_rotated_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
"""

_UPDATE_CREDENTIAL = """
UPDATE keyvault.credentials
SET name = $2, service = $3, description = $4, environment = $5, tags = $6,
    encrypted_key = $7, key_derivation_mode = $8, rotation_interval_days = $9,
    status = $10, is_active = $11, updated_at = $12, last_rotated_at = $13
WHERE id = $1
"""

_MARK_EXPIRED = """
UPDATE keyvault.credentials
SET status = 'expired', is_active = FALSE, updated_at = $2
WHERE id = $1 AND status = 'active'
"""

_DELETE_CREDENTIAL = """
DELETE FROM keyvault.credentials
WHERE id = $1
"""


def _affected_rows(result: str) -> int:
    """Parse asyncpg's command status tag, e.g. ``UPDATE 1``."""
    try:
        return int(result.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class PgCredentialStore:
    """PostgreSQL store over an asyncpg-compatible connection pool."""

    def __init__(self, db_pool: Any):
        self._db = db_pool

    @staticmethod
    def _to_record(row: Any) -> CredentialRecord:
        data = dict(row)
        data["tags"] = list(data.get("tags") or [])
        return CredentialRecord(**data)

    async def _fetch(self, query: str, *args: Any) -> list[CredentialRecord]:
        async with self._db.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [self._to_record(row) for row in rows]

    async def get(self, credential_id: str) -> Optional[CredentialRecord]:
        async with self._db.acquire() as conn:
            row = await conn.fetchrow(_SELECT_BY_ID, credential_id)
        return self._to_record(row) if row else None

    async def list_by_owner(self, owner_id: str) -> list[CredentialRecord]:
        return await self._fetch(_SELECT_BY_OWNER, owner_id)

    async def list_active(self) -> list[CredentialRecord]:
        return await self._fetch(_SELECT_ACTIVE)

    async def list_by_mode(
        self, mode: KeyDerivationMode, limit: int, offset: int,
    ) -> list[CredentialRecord]:
        return await self._fetch(_SELECT_BY_MODE, mode.value, limit, offset)

    async def insert(self, record: CredentialRecord) -> None:
        async with self._db.acquire() as conn:
            await conn.execute(
                _INSERT_CREDENTIAL,
                record.id, record.owner_id, record.name, record.service,
                record.description, record.environment, record.tags,
                record.encrypted_key, record.key_derivation_mode.value,
                record.rotation_interval_days, record.status.value,
                record.is_active, record.created_at, record.updated_at,
                record.last_rotated_at,
            )

    async def update(self, record: CredentialRecord) -> None:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                _UPDATE_CREDENTIAL,
                record.id, record.name, record.service, record.description,
                record.environment, record.tags, record.encrypted_key,
                record.key_derivation_mode.value, record.rotation_interval_days,
                record.status.value, record.is_active, record.updated_at,
                record.last_rotated_at,
            )
        if not _affected_rows(result):
            raise CredentialNotFound(f"Credential {record.id} not found")

    async def mark_expired(
        self, credential_id: str, now: Optional[datetime] = None,
    ) -> bool:
        async with self._db.acquire() as conn:
            result = await conn.execute(
                _MARK_EXPIRED, credential_id, now or utcnow(),
            )
        return _affected_rows(result) > 0

    async def delete(self, credential_id: str) -> bool:
        async with self._db.acquire() as conn:
            result = await conn.execute(_DELETE_CREDENTIAL, credential_id)
        if _affected_rows(result):
            logger.debug("Credential deleted: id=%s", credential_id)
            return True
        return False
