"""
Legacy download model.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, ForeignKey, DateTime, Integer
from sqlmodel import Field, Relationship, Index

from media_migrator.core.time_utils import utc_now
from .base import BaseModel
from .media import MediaFile


class Download(BaseModel, table=True):
    """
    Pre-migration download record.

    Rows are read-only during migration except for ``media_file_id``, which links
    a download to the media file that replaces it.
    """
    __tablename__ = "download"

    filename: Optional[str] = Field(default=None, max_length=400)
    extension: Optional[str] = Field(default=None, max_length=50)
    content_type: Optional[str] = Field(default=None, max_length=100)
    is_new: bool = Field(default=False)
    is_transient: bool = Field(default=False)
    use_download_url: bool = Field(default=False)
    download_url: Optional[str] = Field(default=None, max_length=2000)
    updated_on_utc: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    media_storage_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("media_storage.id", ondelete="SET NULL"),
            nullable=True
        )
    )
    media_file_id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("media_file.id", ondelete="SET NULL"),
            nullable=True
        )
    )

    # Relations
    media_file: Optional[MediaFile] = Relationship()

    __table_args__ = (
        Index('idx_download_media_file_id', 'media_file_id'),
    )
