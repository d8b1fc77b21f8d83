"""
Relocation of legacy payload files into the storage layout.
"""
from typing import Dict, Iterable, Optional, Tuple

from media_migrator.core.exceptions import InvalidMediaPathError, MediaStorageError
from media_migrator.migration.context import BatchContext
from media_migrator.models import Download, MediaFile, MediaStorage
from media_migrator.services.media_file_system import LocalMediaFileSystem, MediaFileEntry
from media_migrator.services.storage_paths import StoragePathBuilder

DOWNLOADS_FOLDER = "Downloads"


class StorageRelocator:
    """
    Copies payloads to the deterministic storage path of their media file.

    A payload is never copied onto an existing file, so relocating twice is
    harmless. Copy failures of single files are recorded as batch issues.
    """

    def __init__(self, file_system: LocalMediaFileSystem, path_builder: StoragePathBuilder):
        self.file_system = file_system
        self.path_builder = path_builder

    def build_file_name(self, file_id: int, extension: Optional[str], mime_type: Optional[str] = None) -> str:
        return self.path_builder.build_file_name(file_id, extension, mime_type)

    def get_storage_path(self, file: MediaFile, create_folder: bool = True) -> str:
        return self.path_builder.get_storage_path(file, create_folder=create_folder)

    def relocate_downloads(
        self,
        ctx: BatchContext,
        new_files: Iterable[MediaFile],
        downloads: Dict[int, Download],
    ) -> int:
        """
        Copy the legacy files of a committed batch from the downloads folder.

        Legacy files are named after the download id. Files whose name is not
        an id of this batch are ignored.

        Returns:
            Number of copied files
        """
        files_by_id = {file.id: file for file in new_files}
        if not files_by_id:
            return 0

        copied = 0
        for entry in self.file_system.list_files(DOWNLOADS_FOLDER):
            title = entry.title
            if not (title.isascii() and title.isdigit()):
                continue

            download = downloads.get(int(title))
            if download is None or download.media_file_id is None:
                continue

            file = files_by_id.get(download.media_file_id)
            if file is None:
                continue

            if self._copy(ctx, file, entry.path, record_id=download.id):
                copied += 1

        return copied

    def relocate_uploads(self, ctx: BatchContext, pairs: Iterable[Tuple[MediaFile, MediaFileEntry]]) -> int:
        """Copy uploaded files to the storage paths of their committed media files."""
        copied = 0
        for file, entry in pairs:
            if self._copy(ctx, file, entry.path, record_id=file.id):
                copied += 1
        return copied

    def attach_inline(self, file: MediaFile, entry: MediaFileEntry) -> MediaStorage:
        """Read a payload fully and attach it to the file as a database storage row."""
        try:
            with self.file_system.open_read(entry.path) as stream:
                storage = MediaStorage(data=stream.read())
        except (OSError, InvalidMediaPathError) as e:
            raise MediaStorageError(f"Failed to read {entry.path}: {e}") from e
        file.media_storage = storage
        return storage

    def _copy(self, ctx: BatchContext, file: MediaFile, source_path: str, record_id: Optional[int]) -> bool:
        target_path = None
        try:
            target_path = self.get_storage_path(file)
            if self.file_system.file_exists(target_path):
                return False
            self.file_system.copy_file(source_path, target_path)
            return True
        except (OSError, InvalidMediaPathError) as e:
            ctx.add_issue(f"Failed to copy payload: {e}", record_id=record_id, path=target_path or source_path)
            return False
