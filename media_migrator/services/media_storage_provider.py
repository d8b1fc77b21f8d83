"""
Storage providers for media payloads.

The database provider keeps payloads inline in ``media_storage`` rows, the file
system provider keeps them at the file's storage path below the media root.
"""
from io import BytesIO
from typing import BinaryIO, Callable, Dict, Optional

from sqlmodel import Session

from media_migrator.core.config import STORAGE_PROVIDER_DATABASE, STORAGE_PROVIDER_FILESYSTEM
from media_migrator.core.exceptions import StorageProviderNotFoundError
from media_migrator.core.logging_config import log_info
from media_migrator.models import MediaFile, MediaStorage
from media_migrator.services.media_file_system import LocalMediaFileSystem
from media_migrator.services.storage_paths import StoragePathBuilder

STORAGE_PROVIDER_SETTING = "Media.Storage.Provider"


class MediaStorageProvider:
    """Read access to the payload of a media file."""

    key: str = ""
    is_file_system: bool = False

    def open_read(self, file: MediaFile) -> Optional[BinaryIO]:
        """Open the payload for reading, None if there is none. The caller closes the stream."""
        raise NotImplementedError

    def get_size(self, file: MediaFile) -> int:
        """Payload size in bytes, 0 if there is no payload."""
        raise NotImplementedError


class DatabaseMediaStorageProvider(MediaStorageProvider):
    """Payloads stored inline in the database."""

    key = STORAGE_PROVIDER_DATABASE

    def __init__(self, session: Session):
        self.session = session

    def _load(self, file: MediaFile) -> Optional[MediaStorage]:
        if file.media_storage is not None:
            return file.media_storage
        if file.media_storage_id is None:
            return None
        return self.session.get(MediaStorage, file.media_storage_id)

    def open_read(self, file: MediaFile) -> Optional[BinaryIO]:
        storage = self._load(file)
        if storage is None or storage.data is None:
            return None
        return BytesIO(storage.data)

    def get_size(self, file: MediaFile) -> int:
        storage = self._load(file)
        if storage is None or storage.data is None:
            return 0
        return len(storage.data)


class FileSystemMediaStorageProvider(MediaStorageProvider):
    """Payloads stored as files at their storage path."""

    key = STORAGE_PROVIDER_FILESYSTEM
    is_file_system = True

    def __init__(self, file_system: LocalMediaFileSystem, path_builder: StoragePathBuilder):
        self.file_system = file_system
        self.path_builder = path_builder

    def open_read(self, file: MediaFile) -> Optional[BinaryIO]:
        path = self.path_builder.get_storage_path(file, create_folder=False)
        if not self.file_system.file_exists(path):
            return None
        return self.file_system.open_read(path)

    def get_size(self, file: MediaFile) -> int:
        path = self.path_builder.get_storage_path(file, create_folder=False)
        if not self.file_system.file_exists(path):
            return 0
        return self.file_system.get_size(path)


class StorageProviderRegistry:
    """Maps provider keys to provider factories."""

    def __init__(self):
        self._factories: Dict[str, Callable[[], MediaStorageProvider]] = {}

    def register(self, key: str, factory: Callable[[], MediaStorageProvider]) -> None:
        self._factories[key.strip().lower()] = factory

    @property
    def keys(self) -> list[str]:
        return sorted(self._factories)

    def resolve(self, key: Optional[str]) -> MediaStorageProvider:
        """
        Create the provider registered for a key.

        Raises:
            StorageProviderNotFoundError: If no provider is registered for the key
        """
        normalized = (key or "").strip().lower()
        factory = self._factories.get(normalized)
        if factory is None:
            raise StorageProviderNotFoundError(key)

        provider = factory()
        log_info(f"Resolved media storage provider: {provider.key}")
        return provider


def create_default_registry(
    session: Session,
    file_system: LocalMediaFileSystem,
    path_builder: StoragePathBuilder,
) -> StorageProviderRegistry:
    """Registry with the database and file system providers."""
    registry = StorageProviderRegistry()
    registry.register(STORAGE_PROVIDER_DATABASE, lambda: DatabaseMediaStorageProvider(session))
    registry.register(
        STORAGE_PROVIDER_FILESYSTEM,
        lambda: FileSystemMediaStorageProvider(file_system, path_builder),
    )
    return registry
