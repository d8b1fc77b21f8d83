"""
Custom application exceptions.
"""


class MediaMigratorException(Exception):
    """Base exception for the media migrator."""
    pass


class MigrationStateError(MediaMigratorException):
    """Raised when the migrator is invoked outside of its idle state."""
    pass


class StorageProviderNotFoundError(MediaMigratorException):
    """Raised when no storage provider is registered for a key."""

    def __init__(self, key: str):
        super().__init__(f"Unknown media storage provider: {key}")
        self.key = key


class AlbumNotFoundError(MediaMigratorException):
    """Raised when a required album is not registered."""

    def __init__(self, album_name: str):
        super().__init__(f"Album not found: {album_name}")
        self.album_name = album_name


class MediaStorageError(MediaMigratorException):
    """Raised when a media payload cannot be read or written."""
    pass


class InvalidMediaPathError(MediaMigratorException):
    """Raised when a logical media path escapes the media root."""
    pass
