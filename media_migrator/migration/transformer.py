"""
Record transformation: legacy downloads and uploaded files to media files.
"""
from typing import BinaryIO, Callable, Optional

from PIL import Image

from media_migrator.core.config import settings
from media_migrator.core.time_utils import ensure_utc
from media_migrator.migration.context import BatchContext
from media_migrator.models import Download, MediaFile, MediaType
from media_migrator.services.media_file_system import MediaFileEntry
from media_migrator.services.media_storage_provider import MediaStorageProvider
from media_migrator.services.media_type_resolver import SNIFF_BYTES, MediaTypeResolver
from media_migrator.utils.image_header import read_header_bytes, read_image_dimensions
from media_migrator.utils.media_handler import MediaHandler

# Schema versions of a media file
VERSION_STUB = 0
VERSION_CLASSIFIED = 1
VERSION_UPLOADED = 2

StreamOpener = Callable[[], Optional[BinaryIO]]

# Failures reading or decoding a single payload
PAYLOAD_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


def append_extension(name: str, extension: Optional[str]) -> str:
    """Append ``.extension`` to a name unless it already ends with it (case-insensitive)."""
    if not extension:
        return name
    suffix = f".{extension}"
    if name.lower().endswith(suffix.lower()):
        return name[:-len(suffix)] + suffix
    return name + suffix


class RecordTransformer:
    """
    Builds and enriches media file entities.

    Payloads are read through the storage provider, or through an explicit
    source opener for files that are not stored yet.
    """

    def __init__(
        self,
        storage_provider: MediaStorageProvider,
        type_resolver: MediaTypeResolver,
        header_read_limit: Optional[int] = None,
    ):
        self.storage_provider = storage_provider
        self.type_resolver = type_resolver
        self.header_read_limit = header_read_limit or settings.image_header_read_limit

    def create_from_download(self, download: Download, folder_id: Optional[int]) -> MediaFile:
        """Create the version 0 stub replacing a legacy download."""
        return MediaFile(
            name=download.filename,
            extension=MediaHandler.normalize_extension(download.extension),
            mime_type=download.content_type,
            # Resolved when the stub is finalized
            media_type=MediaType.IMAGE,
            folder_id=folder_id,
            is_new=download.is_new,
            is_transient=download.is_transient,
            media_storage_id=download.media_storage_id,
            created_on_utc=ensure_utc(download.updated_on_utc),
            updated_on_utc=ensure_utc(download.updated_on_utc),
            version=VERSION_STUB,
        )

    def finalize_stub(self, file: MediaFile, ctx: BatchContext) -> bool:
        """
        Complete a version 0 stub.

        Returns:
            False if the file was already finalized and left untouched
        """
        if file.version >= VERSION_CLASSIFIED:
            return False

        if not file.extension:
            file.extension = MediaHandler.map_mime_type_to_extension(file.mime_type)

        file.name = append_extension(file.name, file.extension)
        file.created_on_utc = file.updated_on_utc
        file.version = VERSION_CLASSIFIED

        self.process(file, ctx)
        return True

    def create_from_upload(
        self,
        entry: MediaFileEntry,
        folder_id: int,
        ctx: BatchContext,
        open_source: Optional[StreamOpener] = None,
    ) -> MediaFile:
        """Create a fully processed media file for an uploaded file."""
        file = MediaFile(
            name=entry.name,
            extension=MediaHandler.normalize_extension(entry.extension),
            mime_type=MediaHandler.map_name_to_mime_type(entry.name),
            size=entry.size,
            folder_id=folder_id,
            created_on_utc=entry.last_updated,
            updated_on_utc=entry.last_updated,
            version=VERSION_UPLOADED,
        )
        self.process(file, ctx, source=open_source)
        return file

    def process(self, file: MediaFile, ctx: BatchContext, source: Optional[StreamOpener] = None) -> None:
        """
        Resolve size, media type, image dimensions and pixel size.

        Read and decode failures are recorded as batch issues; the file keeps
        null dimensions in that case.
        """
        # Sources that are not stored yet report their own size
        if not file.size and source is None:
            file.size = self._get_size(file, ctx)

        file.media_type = self.type_resolver.resolve(
            file.extension,
            file.mime_type,
            sniff=lambda: self._read_head(file, source, SNIFF_BYTES),
        )

        if file.media_type == MediaType.IMAGE and file.width is None and file.height is None:
            self._resolve_dimensions(file, ctx, source)

        if file.width is not None and file.height is not None:
            file.pixel_size = file.width * file.height

    def _open(self, file: MediaFile, source: Optional[StreamOpener]) -> Optional[BinaryIO]:
        if source is not None:
            return source()
        return self.storage_provider.open_read(file)

    def _get_size(self, file: MediaFile, ctx: BatchContext) -> int:
        try:
            return self.storage_provider.get_size(file)
        except OSError as e:
            ctx.add_issue(f"Failed to read payload size: {e}", record_id=file.id)
            return 0

    def _read_head(self, file: MediaFile, source: Optional[StreamOpener], limit: int) -> Optional[bytes]:
        stream = self._open(file, source)
        if stream is None:
            return None
        with stream:
            return read_header_bytes(stream, limit)

    def _resolve_dimensions(self, file: MediaFile, ctx: BatchContext, source: Optional[StreamOpener]) -> None:
        stream = None
        try:
            stream = self._open(file, source)
            if stream is None:
                return
            dimensions = read_image_dimensions(stream, self.header_read_limit)
            if dimensions is not None:
                file.width, file.height = dimensions
        except PAYLOAD_ERRORS as e:
            ctx.add_issue(f"Failed to read image dimensions: {e}", record_id=file.id, path=file.name)
        finally:
            if stream is not None:
                stream.close()
