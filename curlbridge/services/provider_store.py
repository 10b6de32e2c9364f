"""
Provider Store
==============
Supplies ProviderDescriptor records keyed by provider id.

Design
------
- ``ProviderStore`` is the narrow interface the engine depends on: read one
  descriptor, and write back a refreshed bearer token with its expiry.
- ``InMemoryProviderStore`` keeps records in a dict guarded by an
  asyncio.Lock, seeded from a JSON file at startup.  Records are replaced,
  never mutated in place, so a descriptor handed to an in-flight invocation
  does not change underneath it.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from curlbridge.core.logging import get_logger
from curlbridge.models import ProviderDescriptor

logger = get_logger(__name__)


class ProviderStore(Protocol):
    async def get(self, provider_id: str) -> Optional[ProviderDescriptor]:
        ...

    async def save_token(self, provider_id: str, token: str, expires_at: datetime) -> None:
        ...


class InMemoryProviderStore:
    def __init__(self, descriptors: Iterable[ProviderDescriptor] = ()) -> None:
        self._records: Dict[str, ProviderDescriptor] = {d.id: d for d in descriptors}
        self._lock = asyncio.Lock()

    @classmethod
    def from_file(cls, path: str) -> "InMemoryProviderStore":
        """Load descriptors from a JSON list (or ``{"providers": [...]}``)."""
        file_path = Path(path)
        if not file_path.exists():
            logger.warning("Providers file not found, starting empty", extra={"path": path})
            return cls()

        raw = json.loads(file_path.read_text(encoding="utf-8"))
        if isinstance(raw, dict):
            raw = raw.get("providers", [])
        descriptors = [ProviderDescriptor.model_validate(item) for item in raw]
        logger.info("Providers loaded", extra={"path": path, "count": len(descriptors)})
        return cls(descriptors)

    async def get(self, provider_id: str) -> Optional[ProviderDescriptor]:
        async with self._lock:
            return self._records.get(provider_id)

    async def list_active(self) -> List[ProviderDescriptor]:
        async with self._lock:
            return [d for d in self._records.values() if d.is_active]

    async def save_token(self, provider_id: str, token: str, expires_at: datetime) -> None:
        async with self._lock:
            descriptor = self._records.get(provider_id)
            if descriptor is None or descriptor.auth is None:
                raise KeyError(f"No authenticated provider '{provider_id}'")
            auth = descriptor.auth.model_copy(update={"token": token, "token_expires_at": expires_at})
            self._records[provider_id] = descriptor.model_copy(update={"auth": auth})
        logger.debug(
            "Provider token persisted",
            extra={"provider_id": provider_id, "expires_at": expires_at.isoformat()},
        )
