"""
Media file helpers.

MIME type and extension lookups shared by the transformer, the relocator and
the media type resolver.
"""
import mimetypes
from pathlib import PurePosixPath
from typing import ClassVar, Optional

DEFAULT_MIME_TYPE = "application/octet-stream"


class MediaHandler:
    """
    Handles MIME type and extension mapping.

    Provides:
    - Extension normalization
    - MIME type to extension lookup
    - File name to MIME type lookup
    """

    # Extension to MIME type mapping
    MIME_TYPE_MAP: ClassVar[dict[str, str]] = {
        '.jpg': 'image/jpeg', '.jpeg': 'image/jpeg', '.png': 'image/png',
        '.gif': 'image/gif', '.webp': 'image/webp', '.bmp': 'image/bmp',
        '.tiff': 'image/tiff', '.svg': 'image/svg+xml', '.ico': 'image/x-icon',
        '.mp4': 'video/mp4', '.avi': 'video/x-msvideo', '.mov': 'video/quicktime',
        '.webm': 'video/webm', '.mkv': 'video/x-matroska', '.flv': 'video/x-flv',
        '.m4v': 'video/x-m4v', '.wmv': 'video/x-ms-wmv',
        '.mp3': 'audio/mpeg', '.wav': 'audio/wav', '.ogg': 'audio/ogg',
        '.m4a': 'audio/mp4', '.aac': 'audio/aac', '.flac': 'audio/flac',
        '.pdf': 'application/pdf', '.doc': 'application/msword',
        '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        '.xls': 'application/vnd.ms-excel',
        '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        '.txt': 'text/plain', '.csv': 'text/csv', '.xml': 'text/xml',
        '.html': 'text/html', '.json': 'application/json', '.zip': 'application/zip',
    }

    # Preferred extension for MIME types with several registered extensions
    EXTENSION_MAP: ClassVar[dict[str, str]] = {
        'image/jpeg': 'jpg',
        'image/pjpeg': 'jpg',
        'image/x-png': 'png',
        'image/tiff': 'tiff',
        'image/svg+xml': 'svg',
        'video/mp4': 'mp4',
        'video/quicktime': 'mov',
        'audio/mpeg': 'mp3',
        'audio/mp4': 'm4a',
        'text/plain': 'txt',
        'text/html': 'html',
        'text/xml': 'xml',
        'application/xml': 'xml',
    }

    @staticmethod
    def normalize_extension(extension: Optional[str]) -> str:
        """
        Normalize an extension to lower case without leading dots.

        Args:
            extension: Extension such as '.PNG', 'png' or None

        Returns:
            Normalized extension, empty string if none
        """
        if not extension:
            return ""
        return extension.strip().lstrip(".").lower()

    @classmethod
    def map_mime_type_to_extension(cls, mime_type: Optional[str]) -> str:
        """
        Map a MIME type to a file extension.

        Args:
            mime_type: MIME type, e.g. 'image/jpeg'

        Returns:
            Extension without dot, empty string if unknown
        """
        if not mime_type:
            return ""

        mime_type = mime_type.split(";", 1)[0].strip().lower()
        if mime_type in cls.EXTENSION_MAP:
            return cls.EXTENSION_MAP[mime_type]

        for extension, mapped in cls.MIME_TYPE_MAP.items():
            if mapped == mime_type:
                return extension.lstrip(".")

        if not mimetypes.inited:
            mimetypes.init()
        guessed = mimetypes.guess_extension(mime_type)
        return guessed.lstrip(".") if guessed else ""

    @classmethod
    def map_name_to_mime_type(cls, filename: str) -> str:
        """
        Guess the MIME type of a file name.

        Args:
            filename: File name with extension

        Returns:
            MIME type, 'application/octet-stream' if unknown
        """
        suffix = PurePosixPath(filename).suffix.lower()
        if suffix in cls.MIME_TYPE_MAP:
            return cls.MIME_TYPE_MAP[suffix]

        if not mimetypes.inited:
            mimetypes.init()
        mime_type, _ = mimetypes.guess_type(filename)
        return mime_type or DEFAULT_MIME_TYPE
