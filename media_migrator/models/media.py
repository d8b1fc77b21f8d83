"""
Media library models.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, ForeignKey, Enum as SAEnum, String, DateTime, Integer, LargeBinary, Boolean, UniqueConstraint
from sqlmodel import Field, Relationship, Index, CheckConstraint

from media_migrator.core.time_utils import utc_now
from .base import BaseModel
from .enums import MediaType


class MediaStorage(BaseModel, table=True):
    """
    Raw payload of a media file held inline in the database.

    Only used by the database storage provider; the file system provider keeps
    the payload at the file's storage path instead.
    """
    __tablename__ = "media_storage"

    data: Optional[bytes] = Field(
        default=None,
        sa_column=Column(LargeBinary, nullable=True)
    )


class MediaFolder(BaseModel, table=True):
    """
    Hierarchical media folder. Album roots have no parent and ``is_album`` set.
    """
    __tablename__ = "media_folder"

    name: str = Field(..., max_length=255)
    parent_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("media_folder.id", ondelete="CASCADE"),
            nullable=True,
            index=True
        )
    )
    is_album: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False)
    )
    can_detect_tracks: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, default=False)
    )
    files_count: int = Field(default=0, ge=0)

    __table_args__ = (
        UniqueConstraint('parent_id', 'name', name='uq_media_folder_parent_name'),
    )


class MediaFile(BaseModel, table=True):
    """
    Unified media entity.

    ``version`` records which migration stages have been applied:
    0 = stub created from a download, 1 = storage classified,
    2 = created and processed from an uploaded file.
    """
    __tablename__ = "media_file"

    name: str = Field(..., max_length=300)
    extension: Optional[str] = Field(default=None, max_length=50)
    mime_type: Optional[str] = Field(default=None, max_length=100)
    media_type: MediaType = Field(
        default=MediaType.OTHER,
        sa_column=Column(
            SAEnum(MediaType, name="media_type_enum", values_callable=lambda x: [e.value for e in x]),
            nullable=False,
            default=MediaType.OTHER
        )
    )
    size: int = Field(default=0, ge=0)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    pixel_size: Optional[int] = Field(default=None)

    folder_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("media_folder.id", ondelete="SET NULL"),
            nullable=True
        )
    )
    media_storage_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("media_storage.id", ondelete="SET NULL"),
            nullable=True
        )
    )

    version: int = Field(default=0, ge=0)
    is_new: bool = Field(default=False)
    is_transient: bool = Field(default=False)

    created_on_utc: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_on_utc: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    # Relations
    media_storage: Optional[MediaStorage] = Relationship()

    __table_args__ = (
        Index('idx_media_file_folder_id', 'folder_id'),
        Index('idx_media_file_version', 'version'),
        CheckConstraint('version >= 0', name='check_media_file_version_non_negative'),
        CheckConstraint('size >= 0', name='check_media_file_size_non_negative'),
    )


class MediaTrack(BaseModel, table=True):
    """
    A reference from an entity property to a media file, grouped by album.
    """
    __tablename__ = "media_track"

    media_file_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("media_file.id", ondelete="CASCADE"),
            nullable=False
        )
    )
    album: str = Field(
        sa_column=Column(String(50), nullable=False, index=True)
    )
    entity_id: int = Field(...)
    entity_name: str = Field(..., max_length=100)
    property_name: str = Field(..., max_length=100)

    __table_args__ = (
        UniqueConstraint('media_file_id', 'entity_id', 'entity_name', 'property_name', name='uq_media_track'),
    )
