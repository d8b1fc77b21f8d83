"""
Deterministic storage locations of media payloads.

A media file with id 42 and extension ``png`` lives at
``Storage/0000/0000042.png``. The id width and the fan-out prefix length must
stay stable across runs, otherwise already relocated payloads are not found.
"""
from typing import Optional

from media_migrator.core.config import settings
from media_migrator.models import MediaFile
from media_migrator.services.media_file_system import LocalMediaFileSystem
from media_migrator.utils.media_handler import MediaHandler

STORAGE_FOLDER = "Storage"


class StoragePathBuilder:
    """Builds storage file names and paths for media files."""

    def __init__(
        self,
        file_system: LocalMediaFileSystem,
        id_width: Optional[int] = None,
        fanout_length: Optional[int] = None,
    ):
        self.file_system = file_system
        self.id_width = id_width or settings.storage_id_width
        self.fanout_length = fanout_length or settings.storage_fanout_length

    def build_file_name(self, file_id: int, extension: Optional[str], mime_type: Optional[str] = None) -> str:
        """
        Build the storage file name of a media file.

        The extension is derived from the MIME type when empty. No trailing dot
        is written when neither yields an extension.
        """
        ext = MediaHandler.normalize_extension(extension)
        if not ext:
            ext = MediaHandler.map_mime_type_to_extension(mime_type)

        name = f"{file_id:0{self.id_width}d}"
        return f"{name}.{ext}" if ext else name

    def get_storage_path(self, file: MediaFile, create_folder: bool = True) -> str:
        """
        Logical storage path of a persisted media file.

        Raises:
            ValueError: If the file has no id yet
        """
        if file.id is None:
            raise ValueError("Media file must be persisted before its storage path is known")

        file_name = self.build_file_name(file.id, file.extension, file.mime_type)
        subfolder = self.file_system.combine(STORAGE_FOLDER, file_name[:self.fanout_length])

        if create_folder:
            self.file_system.try_create_folder(subfolder)

        return self.file_system.combine(subfolder, file_name)
