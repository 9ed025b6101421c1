"""
Encrypted storage of per-user and per-instance provider API keys.

KeyStorageService is the interface; InMemoryKeyStorage is the shipped
implementation. A durable backend must honor the same contract: keys are
addressed by (user_id, provider_type), user_id 0 means instance-level, and
records handed to callers are copies.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from .context import Context
from .crypto import KeyCrypto, generate_key_id, mask_api_key, validate_api_key_format
from .errors import KeyAlreadyExistsError, KeyNotFoundError
from .rwlock import RWLock
from .types import ProviderType

logger = logging.getLogger(__name__)

INSTANCE_USER_ID = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredAPIKey:
    """
    A stored key. Only the ciphertext and a masked form are kept.

    Attributes:
        id: Short fingerprint of the plaintext key (see generate_key_id)
        provider_type: Provider the key belongs to
        encrypted_key: base64 AES-GCM blob
        masked_key: Display form, e.g. "********3xyz"
        user_id: Owner, 0 for instance-level keys
        last_used_at: None until mark_key_used() is called
    """
    id: str
    provider_type: ProviderType
    encrypted_key: str
    masked_key: str
    created_at: datetime
    updated_at: datetime
    last_used_at: Optional[datetime] = None
    user_id: int = INSTANCE_USER_ID


class KeyStorageService(Protocol):
    def store_key(self, ctx: Context, user_id: int, provider_type: ProviderType, api_key: str) -> StoredAPIKey:
        """Raises KeyAlreadyExistsError if a key exists; use update_key() to replace it."""
        ...

    def get_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> str:
        """Return the decrypted key."""
        ...

    def get_stored_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> StoredAPIKey:
        ...

    def update_key(self, ctx: Context, user_id: int, provider_type: ProviderType, api_key: str) -> StoredAPIKey:
        ...

    def delete_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> None:
        ...

    def list_keys(self, ctx: Context, user_id: int) -> list[StoredAPIKey]:
        ...

    def has_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> bool:
        ...

    def mark_key_used(self, ctx: Context, user_id: int, provider_type: ProviderType) -> None:
        ...


class InMemoryKeyStorage:
    """
    Process-local key vault.

    Raises:
        KeyTooShortError: If master_key is shorter than 16 bytes
    """

    def __init__(self, master_key: str):
        self._crypto = KeyCrypto(master_key)
        self._keys: dict[tuple[int, ProviderType], StoredAPIKey] = {}
        self._lock = RWLock()

    def _lookup(self, user_id: int, provider_type: ProviderType) -> StoredAPIKey:
        stored = self._keys.get((user_id, ProviderType(provider_type)))
        if stored is None:
            raise KeyNotFoundError()
        return stored

    def store_key(self, ctx: Context, user_id: int, provider_type: ProviderType, api_key: str) -> StoredAPIKey:
        """
        Raises:
            InvalidAPIKeyFormatError: If the key fails the format check
            KeyAlreadyExistsError: If a key is already stored for this slot
        """
        validate_api_key_format(provider_type, api_key)
        provider_type = ProviderType(provider_type)

        with self._lock.write():
            slot = (user_id, provider_type)
            if slot in self._keys:
                raise KeyAlreadyExistsError()

            now = _utc_now()
            stored = StoredAPIKey(
                id=generate_key_id(api_key),
                provider_type=provider_type,
                encrypted_key=self._crypto.encrypt(api_key),
                masked_key=mask_api_key(api_key),
                created_at=now,
                updated_at=now,
                user_id=user_id,
            )
            self._keys[slot] = stored

        logger.info("API key stored: user_id=%d provider=%s key_id=%s",
                    user_id, provider_type, stored.id)
        return dataclasses.replace(stored)

    def get_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> str:
        """
        Raises:
            KeyNotFoundError: If nothing is stored for this slot
            InvalidCiphertextError: If the stored blob cannot be decrypted
        """
        with self._lock.read():
            encrypted = self._lookup(user_id, provider_type).encrypted_key
        return self._crypto.decrypt(encrypted)

    def get_stored_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> StoredAPIKey:
        with self._lock.read():
            return dataclasses.replace(self._lookup(user_id, provider_type))

    def update_key(self, ctx: Context, user_id: int, provider_type: ProviderType, api_key: str) -> StoredAPIKey:
        """
        Replace an existing key. created_at is kept.

        Raises:
            InvalidAPIKeyFormatError: If the key fails the format check
            KeyNotFoundError: If nothing is stored for this slot
        """
        validate_api_key_format(provider_type, api_key)

        with self._lock.write():
            stored = self._lookup(user_id, provider_type)
            stored.id = generate_key_id(api_key)
            stored.encrypted_key = self._crypto.encrypt(api_key)
            stored.masked_key = mask_api_key(api_key)
            stored.updated_at = _utc_now()
            result = dataclasses.replace(stored)

        logger.info("API key updated: user_id=%d provider=%s key_id=%s",
                    user_id, result.provider_type, result.id)
        return result

    def delete_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> None:
        with self._lock.write():
            self._lookup(user_id, provider_type)
            del self._keys[(user_id, ProviderType(provider_type))]
        logger.info("API key deleted: user_id=%d provider=%s", user_id, provider_type)

    def list_keys(self, ctx: Context, user_id: int) -> list[StoredAPIKey]:
        with self._lock.read():
            return [
                dataclasses.replace(stored)
                for (owner, _), stored in self._keys.items()
                if owner == user_id
            ]

    def has_key(self, ctx: Context, user_id: int, provider_type: ProviderType) -> bool:
        with self._lock.read():
            return (user_id, ProviderType(provider_type)) in self._keys

    def mark_key_used(self, ctx: Context, user_id: int, provider_type: ProviderType) -> None:
        with self._lock.write():
            self._lookup(user_id, provider_type).last_used_at = _utc_now()
