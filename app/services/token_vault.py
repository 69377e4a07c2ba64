"""
Encrypted storage of Google OAuth credential records per caller identity.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from app.clients.kv_store import KeyValueStore
from app.core.errors import CredentialCorruptError
from app.models.identity import CallerIdentity, credential_key, describe_identity
from app.models.oauth import CredentialRecord
from app.services.token_cipher import CiphertextError, TokenCipherService

logger = logging.getLogger(__name__)


class TokenVault:
    """
    Map caller identities to credential records, ciphertext-only at rest.

    Every call is a store round trip; there is no cache in front of the
    shared store. Records are written without a TTL and live until
    :meth:`delete`.
    """

    def __init__(self, store: KeyValueStore, cipher: TokenCipherService) -> None:
        self._store = store
        self._cipher = cipher

    async def get(self, identity: CallerIdentity) -> Optional[CredentialRecord]:
        """
        Return the identity's record, or ``None`` when it never connected.

        Raises :class:`CredentialCorruptError` when ciphertext is present but
        unreadable, which points at a key mismatch rather than a missing grant.
        """
        ciphertext = await self._store.get(credential_key(identity))
        if ciphertext is None:
            return None
        try:
            plaintext = self._cipher.decrypt(ciphertext)
            return CredentialRecord.model_validate_json(plaintext)
        except (CiphertextError, ValidationError) as exc:
            logger.error(
                "Credential record for %s is unreadable (%s); encryption key mismatch?",
                describe_identity(identity),
                exc.__class__.__name__,
            )
            raise CredentialCorruptError() from exc

    async def put(self, identity: CallerIdentity, record: CredentialRecord) -> None:
        ciphertext = self._cipher.encrypt(record.model_dump_json())
        await self._store.set(credential_key(identity), ciphertext)

    async def delete(self, identity: CallerIdentity) -> None:
        """Remove the record; succeeds whether or not one exists."""
        await self._store.delete(credential_key(identity))


__all__ = ["TokenVault"]
