from pathlib import Path
from typing import Optional
import logging
import os

import yaml

from npm_adapter.domain.models import RepositoryConfig
from npm_adapter.services.proxy_cache import ProxyCache
from npm_adapter.services.publishing import PublishingService
from npm_adapter.services.remote import HttpNpmRemote
from npm_adapter.storage.blob_storage import BlobStorage
from npm_adapter.storage.file_storage import FileBlobStorage

logger = logging.getLogger(__name__)

DATA_ROOT_ENV_VAR = "NPM_ADAPTER_DATA_DIR"
CONFIG_ENV_VAR = "NPM_ADAPTER_CONFIG"
_REPO_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_DATA_DIR = _REPO_ROOT / "data"

_config: Optional[RepositoryConfig] = None
_storage: Optional[BlobStorage] = None
_publishing_service: Optional[PublishingService] = None
_proxy_cache: Optional[ProxyCache] = None


def get_data_dir() -> Path:
    """
    Priority:
    1. Environment variable NPM_ADAPTER_DATA_DIR
    2. '<project root>/data'
    """
    env_path = os.environ.get(DATA_ROOT_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return _DEFAULT_DATA_DIR


def _config_path() -> Path:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return get_data_dir() / "repository.yaml"


def load_repository_config(path: Optional[Path] = None) -> RepositoryConfig:
    """
    Load repository settings from YAML. A missing or empty file yields the
    defaults; an unreadable one is an error.
    """
    path = path or _config_path()
    if not path.exists():
        logger.info(f"No repository config at {path}, using defaults")
        return RepositoryConfig()
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return RepositoryConfig(**raw)


def get_repository_config() -> RepositoryConfig:
    global _config
    if _config is None:
        _config = load_repository_config()
    return _config


def set_repository_config(config: RepositoryConfig) -> None:
    global _config
    _config = config


def get_storage() -> BlobStorage:
    global _storage
    if _storage is None:
        _storage = FileBlobStorage(get_data_dir() / "storage")
    return _storage


def get_publishing_service() -> PublishingService:
    global _publishing_service
    if _publishing_service is None:
        _publishing_service = PublishingService(get_storage())
    return _publishing_service


def get_proxy_cache() -> ProxyCache:
    global _proxy_cache
    if _proxy_cache is None:
        config = get_repository_config()
        _proxy_cache = ProxyCache(
            get_storage(),
            HttpNpmRemote(config.remote),
            ttl=config.metadata_ttl,
        )
    return _proxy_cache


async def close_proxy_cache() -> None:
    global _proxy_cache
    if _proxy_cache is not None:
        await _proxy_cache.close()
        _proxy_cache = None
