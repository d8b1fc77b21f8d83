# Import all models for easy access
from .base import BaseModel
from .enums import MediaType, MigrationState
from .legacy import Download
from .media import MediaFile, MediaFolder, MediaStorage, MediaTrack
from .message_template import MessageTemplate
from .setting import Setting

__all__ = [
    "BaseModel",
    "MediaType",
    "MigrationState",
    "Download",
    "MediaFile",
    "MediaFolder",
    "MediaStorage",
    "MediaTrack",
    "MessageTemplate",
    "Setting",
]
