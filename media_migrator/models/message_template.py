"""
Message template model.
"""
from typing import Optional

from sqlalchemy import Column, Text
from sqlmodel import Field

from .base import BaseModel

ATTACHMENT_SLOTS = ("attachment1_file_id", "attachment2_file_id", "attachment3_file_id")


class MessageTemplate(BaseModel, table=True):
    """
    E-mail template with up to three file attachments.

    Before migration the attachment slots hold download ids; afterwards they
    hold media file ids.
    """
    __tablename__ = "message_template"

    name: str = Field(..., max_length=200)
    subject: Optional[str] = Field(default=None, max_length=1000)
    body: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    attachment1_file_id: Optional[int] = Field(default=None)
    attachment2_file_id: Optional[int] = Field(default=None)
    attachment3_file_id: Optional[int] = Field(default=None)

    @property
    def attachment_ids(self) -> list[Optional[int]]:
        return [getattr(self, slot) for slot in ATTACHMENT_SLOTS]
