"""
Media type classification by extension, MIME type and content sniffing.
"""
import logging
from typing import Callable, Dict, Iterable, Optional

import magic

from media_migrator.models.enums import DEFAULT_EXTENSIONS, MediaType
from media_migrator.utils.media_handler import MediaHandler

logger = logging.getLogger(__name__)

SNIFF_BYTES = 2048

DOCUMENT_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/rtf",
    "application/vnd.ms-excel",
    "application/vnd.ms-powerpoint",
    "application/vnd.oasis.opendocument.text",
    "application/vnd.oasis.opendocument.spreadsheet",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

TEXT_MIME_TYPES = {"application/json", "application/xml", "application/javascript"}


class MediaTypeResolver:
    """Resolve the media type of a file."""

    def __init__(self, extensions: Optional[Dict[MediaType, Iterable[str]]] = None):
        source = extensions if extensions is not None else DEFAULT_EXTENSIONS
        self._extension_map: Dict[str, MediaType] = {}
        for media_type, type_extensions in source.items():
            for extension in type_extensions:
                self._extension_map.setdefault(MediaHandler.normalize_extension(extension), media_type)

        # Cache libmagic detector if available; fall back to extension/MIME detection
        try:
            self._magic = magic.Magic(mime=True)
        except Exception as exc:
            logger.warning("libmagic unavailable: %s", exc)
            self._magic = None

    def resolve(
        self,
        extension: Optional[str],
        mime_type: Optional[str] = None,
        sniff: Optional[Callable[[], Optional[bytes]]] = None,
    ) -> MediaType:
        """
        Classify a file.

        Args:
            extension: File extension with or without dot
            mime_type: Declared MIME type
            sniff: Optional callable returning the first bytes of the payload,
                   only invoked when extension and MIME type are inconclusive

        Returns:
            Resolved MediaType, MediaType.OTHER if nothing matches
        """
        ext = MediaHandler.normalize_extension(extension)
        if ext in self._extension_map:
            return self._extension_map[ext]

        media_type = self.resolve_mime_type(mime_type)
        if media_type is not MediaType.OTHER:
            return media_type

        if sniff is not None:
            detected = self._detect_mime(sniff)
            if detected:
                return self.resolve_mime_type(detected)

        return MediaType.OTHER

    @staticmethod
    def resolve_mime_type(mime_type: Optional[str]) -> MediaType:
        """Classify a MIME type."""
        if not mime_type:
            return MediaType.OTHER

        mime_type = mime_type.split(";", 1)[0].strip().lower()
        category = mime_type.split("/", 1)[0]
        if category == "image":
            return MediaType.IMAGE
        if category == "video":
            return MediaType.VIDEO
        if category == "audio":
            return MediaType.AUDIO
        if mime_type in DOCUMENT_MIME_TYPES:
            return MediaType.DOCUMENT
        if category == "text" or mime_type in TEXT_MIME_TYPES:
            return MediaType.TEXT
        return MediaType.OTHER

    def _detect_mime(self, sniff: Callable[[], Optional[bytes]]) -> Optional[str]:
        if self._magic is None:
            return None
        try:
            head = sniff()
        except OSError as exc:
            logger.warning("Failed to read payload for content sniffing: %s", exc)
            return None
        if not head:
            return None
        try:
            return self._magic.from_buffer(head[:SNIFF_BYTES])
        except Exception as exc:
            logger.warning("Failed to detect MIME type with libmagic: %s", exc)
            return None
