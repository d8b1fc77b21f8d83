"""
Media folder lookups and creation.
"""
from typing import Dict, Optional, Tuple

from sqlmodel import Session, select

from media_migrator.core.logging_config import log_debug
from media_migrator.models import MediaFolder


class MediaFolderService:
    """Service class for media folder operations."""

    def __init__(self, session: Session):
        self.session = session
        self._children: Dict[Tuple[Optional[int], str], int] = {}

    def find_child(self, parent_id: Optional[int], name: str) -> Optional[int]:
        """Id of the folder named ``name`` below ``parent_id``, None if absent."""
        key = (parent_id, name)
        if key in self._children:
            return self._children[key]

        statement = select(MediaFolder.id).where(MediaFolder.name == name)
        if parent_id is None:
            statement = statement.where(MediaFolder.parent_id.is_(None))
        else:
            statement = statement.where(MediaFolder.parent_id == parent_id)

        folder_id = self.session.exec(statement).first()
        if folder_id is not None:
            self._children[key] = folder_id
        return folder_id

    def create_folder(self, name: str, parent_id: int) -> MediaFolder:
        """
        Create and persist a folder below an existing parent.

        Raises:
            ValueError: If the parent folder is not persisted
        """
        if parent_id is None or self.session.get(MediaFolder, parent_id) is None:
            raise ValueError(f"Parent folder {parent_id} does not exist")

        folder = MediaFolder(name=name, parent_id=parent_id)
        self.session.add(folder)
        # Children need the folder id
        self.session.commit()

        self._children[(parent_id, name)] = folder.id
        log_debug(f"Created media folder '{name}'", folder_id=folder.id, parent_id=parent_id)
        return folder

    def clear_cache(self) -> None:
        self._children.clear()
