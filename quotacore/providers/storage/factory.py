from __future__ import annotations

from quotacore.core.config import Settings, get_settings
from quotacore.core.errors import StorageConfigError
from quotacore.providers.storage.base import StorageProvider
from quotacore.providers.storage.json_file import JsonFileStorage
from quotacore.providers.storage.memory import InMemoryStorage


def get_storage_provider(settings: Settings | None = None) -> StorageProvider:
    settings = settings or get_settings()
    backend = (settings.state_backend or "memory").lower()

    if backend == "memory":
        return InMemoryStorage()
    if backend == "file":
        if not settings.state_file_path:
            raise StorageConfigError("state_file_path is required for the file backend")
        return JsonFileStorage(settings.state_file_path)
    raise StorageConfigError(f"unsupported state_backend: {settings.state_backend}")
