from typing import Dict, List

from npm_adapter.domain.errors import NotFound
from npm_adapter.storage.blob_storage import BlobStorage


class InMemoryBlobStorage(BlobStorage):
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def exists(self, key: str) -> bool:
        return key in self._blobs

    async def get(self, key: str) -> bytes:
        try:
            return bytes(self._blobs[key])
        except KeyError:
            raise NotFound(f"No value stored under {key}")

    async def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    async def delete(self, key: str) -> None:
        if key not in self._blobs:
            raise NotFound(f"No value stored under {key}")
        del self._blobs[key]

    async def list(self, prefix: str) -> List[str]:
        return sorted(k for k in self._blobs if k.startswith(prefix))
