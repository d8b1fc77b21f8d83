"""
Album registry.

Albums are root media folders (``is_album`` set, no parent). The system albums
are registered on first access; albums created by other means are picked up as
custom albums.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple, Type

from sqlmodel import Session, SQLModel, select

from media_migrator.core.exceptions import AlbumNotFoundError
from media_migrator.core.logging_config import log_info
from media_migrator.models import Download, MediaFolder, MessageTemplate
from media_migrator.models.message_template import ATTACHMENT_SLOTS

ALBUM_CONTENT = "content"
ALBUM_CATALOG = "catalog"
ALBUM_DOWNLOADS = "downloads"
ALBUM_MESSAGES = "messages"
ALBUM_FILES = "files"


@dataclass(frozen=True)
class TrackedProperty:
    """Entity properties holding media file ids that are tracked for an album."""
    entity: Type[SQLModel]
    properties: Tuple[str, ...]

    @property
    def entity_name(self) -> str:
        return self.entity.__name__


@dataclass(frozen=True)
class AlbumDefinition:
    name: str
    can_detect_tracks: bool = False
    tracked: Tuple[TrackedProperty, ...] = ()


@dataclass(frozen=True)
class AlbumInfo:
    id: int
    name: str
    is_system: bool
    can_detect_tracks: bool = False
    tracked: Tuple[TrackedProperty, ...] = field(default=())


SYSTEM_ALBUMS: Tuple[AlbumDefinition, ...] = (
    AlbumDefinition(ALBUM_CONTENT, can_detect_tracks=True),
    AlbumDefinition(ALBUM_CATALOG, can_detect_tracks=True),
    AlbumDefinition(
        ALBUM_DOWNLOADS,
        can_detect_tracks=True,
        tracked=(TrackedProperty(Download, ("media_file_id",)),),
    ),
    AlbumDefinition(
        ALBUM_MESSAGES,
        can_detect_tracks=True,
        tracked=(TrackedProperty(MessageTemplate, ATTACHMENT_SLOTS),),
    ),
    AlbumDefinition(ALBUM_FILES),
)


class AlbumRegistry:
    """Registers and looks up albums."""

    def __init__(self, session: Session, definitions: Iterable[AlbumDefinition] = SYSTEM_ALBUMS):
        self.session = session
        self.definitions = {definition.name: definition for definition in definitions}
        self._albums: Optional[Dict[str, AlbumInfo]] = None

    def get_all_albums(self) -> List[AlbumInfo]:
        """Return all albums, registering missing system albums first."""
        return list(self._load().values())

    def get_album_by_name(self, name: str) -> Optional[AlbumInfo]:
        return self._load().get(name)

    def require_album(self, name: str) -> AlbumInfo:
        """
        Return a registered album.

        Raises:
            AlbumNotFoundError: If no album with this name exists
        """
        album = self.get_album_by_name(name)
        if album is None:
            raise AlbumNotFoundError(name)
        return album

    def get_album_names(self, include_system: bool = True) -> Set[str]:
        return {
            album.name
            for album in self._load().values()
            if include_system or not album.is_system
        }

    def clear_cache(self) -> None:
        self._albums = None

    def _load(self) -> Dict[str, AlbumInfo]:
        if self._albums is not None:
            return self._albums

        roots = list(self.session.exec(
            select(MediaFolder)
            .where(MediaFolder.parent_id.is_(None), MediaFolder.is_album.is_(True))
            .order_by(MediaFolder.id)
        ).all())
        existing = {folder.name for folder in roots}

        created = []
        for definition in self.definitions.values():
            if definition.name in existing:
                continue
            folder = MediaFolder(
                name=definition.name,
                is_album=True,
                can_detect_tracks=definition.can_detect_tracks,
            )
            self.session.add(folder)
            created.append(folder)

        if created:
            self.session.commit()
            log_info(f"Registered {len(created)} albums", albums=[folder.name for folder in created])

        albums: Dict[str, AlbumInfo] = {}
        for folder in roots + created:
            definition = self.definitions.get(folder.name)
            albums[folder.name] = AlbumInfo(
                id=folder.id,
                name=folder.name,
                is_system=definition is not None,
                can_detect_tracks=folder.can_detect_tracks,
                tracked=definition.tracked if definition else (),
            )

        self._albums = albums
        return albums
