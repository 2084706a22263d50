import logging
import uuid
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os

from npm_adapter.domain.errors import NotFound, StorageError
from npm_adapter.storage.blob_storage import BlobStorage

logger = logging.getLogger(__name__)

# Prefix of in-flight write files; never reported as keys.
_PARTIAL_PREFIX = ".tmp-"


def _scan_files(base: Path) -> List[Path]:
    return [path for path in base.rglob("*") if path.is_file()]


_scan_files_async = aiofiles.os.wrap(_scan_files)


class FileBlobStorage(BlobStorage):
    """
    Stores every key as a file below ``data_dir``; slashes in the key become
    directories.
    """

    def __init__(self, data_dir: Path):
        self._data_dir = data_dir
        if not self._data_dir.exists():
            self._data_dir.mkdir(parents=True, exist_ok=True)
        self._root = self._data_dir.resolve()

    def _parts(self, key: str) -> List[str]:
        parts = [p for p in key.split("/") if p]
        if any(p in (".", "..") or "\\" in p for p in parts):
            raise StorageError(f"Invalid storage key: {key!r}")
        return parts

    def _path(self, key: str) -> Path:
        parts = self._parts(key)
        if not parts:
            raise StorageError(f"Invalid storage key: {key!r}")
        return self._root.joinpath(*parts)

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._path(key))

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise NotFound(f"No value stored under {key}")
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        # Write next to the target first so readers never see a partial file
        tmp_path = path.parent / f"{_PARTIAL_PREFIX}{uuid.uuid4().hex}-{path.name}"
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Stored {len(data)} bytes at {key}")

    async def delete(self, key: str) -> None:
        try:
            await aiofiles.os.remove(self._path(key))
        except FileNotFoundError:
            raise NotFound(f"No value stored under {key}")
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    async def list(self, prefix: str) -> List[str]:
        # Walk from the deepest directory the prefix names, then filter by prefix.
        base_parts = self._parts(prefix)
        if not prefix.endswith("/") and base_parts:
            base_parts = base_parts[:-1]
        base = self._root.joinpath(*base_parts)
        if not await aiofiles.os.path.isdir(base):
            return []
        keys = []
        for path in await _scan_files_async(base):
            if path.name.startswith(_PARTIAL_PREFIX):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)
