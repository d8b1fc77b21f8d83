"""
Enums and constants for the application.
"""
from enum import Enum


class MediaType(str, Enum):
    """Media type classification of a media file."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    TEXT = "text"
    OTHER = "other"

    @property
    def default_extensions(self) -> str:
        """Space separated list of extensions registered for this type."""
        return " ".join(DEFAULT_EXTENSIONS.get(self, ()))


DEFAULT_EXTENSIONS = {
    MediaType.IMAGE: ("png", "jpg", "jpeg", "jfif", "gif", "webp", "bmp", "svg", "ico", "tif", "tiff", "eps"),
    MediaType.VIDEO: ("mp4", "m4v", "mkv", "wmv", "avi", "asf", "mpg", "mpeg", "webm", "flv", "ogv", "mov", "3gp"),
    MediaType.AUDIO: ("mp3", "wav", "wma", "aac", "flac", "oga", "ogg", "m4a"),
    MediaType.DOCUMENT: ("pdf", "doc", "docx", "ppt", "pptx", "pps", "ppsx", "docm", "odt", "ods", "dot", "dotx", "dotm", "psd", "xls", "xlsx", "rtf"),
    MediaType.TEXT: ("txt", "xml", "csv", "htm", "html", "json", "css", "js"),
}


class MigrationState(str, Enum):
    """Lifecycle of a migration run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
