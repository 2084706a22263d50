from abc import ABC, abstractmethod
from typing import List


class BlobStorage(ABC):
    """
    Abstract base class for key/value blob storage.

    Keys are slash-delimited strings mirroring npm path conventions, e.g.
    ``@scope/name/meta.json`` or ``@scope/name/-/name-1.0.0.tgz``.
    """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether a value is stored under ``key``."""
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Read the value stored under ``key``. Raises NotFound if absent."""
        pass

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the value stored under ``key``. Raises NotFound if absent."""
        pass

    @abstractmethod
    async def list(self, prefix: str) -> List[str]:
        """All keys starting with ``prefix``, sorted."""
        pass

    async def delete_all(self, prefix: str) -> List[str]:
        """Remove every key starting with ``prefix`` and return the removed keys."""
        keys = await self.list(prefix)
        for key in keys:
            await self.delete(key)
        return keys
