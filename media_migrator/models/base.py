"""
Base model for all tables.
"""
from typing import Optional

from sqlmodel import SQLModel, Field


class BaseModel(SQLModel):
    """Base model with an auto-increment integer identity."""

    id: Optional[int] = Field(default=None, primary_key=True)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id})>"
