"""Object store capability consumed by the analysis ledger."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any


@dataclass
class StoredRef:
    """Identity and revision of a persisted object."""

    id: str
    revision: int
    created: bool = False


class ObjectStore(ABC):
    """Versioned, content-addressed storage.

    Objects expose ``kind``, ``id`` and ``conversations``. Every write
    produces a new immutable revision; earlier revisions stay readable
    through the store but are never returned by ``get_by_identity``.
    """

    @abstractmethod
    async def create_or_get_by_identity(self, obj: Any) -> StoredRef:
        """Persist ``obj`` unless an object with the same identity exists."""

    @abstractmethod
    async def get_by_identity(self, kind: str, object_id: str) -> Any | None:
        """Return the latest revision of an object, or None."""

    @abstractmethod
    async def put_new_revision(self, obj: Any) -> int:
        """Store ``obj`` as the next revision under its identity."""

    @abstractmethod
    def iterate(self, conversation_id: str, kind: str) -> AsyncIterator[Any]:
        """Stream the latest revision of every ``kind`` object in a conversation."""

    @abstractmethod
    async def list_conversations(self) -> list[str]:
        """Ids of every conversation that owns at least one object."""
