"""
Key-value setting model.
"""
from typing import Optional

from sqlalchemy import Column, String, Text
from sqlmodel import Field

from .base import BaseModel


class Setting(BaseModel, table=True):
    """A named configuration value stored in the database."""
    __tablename__ = "setting"

    name: str = Field(
        sa_column=Column(String(200), nullable=False, unique=True, index=True)
    )
    value: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
