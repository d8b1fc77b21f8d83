"""
Media tracking.

A media track records that an entity property references a media file. Tracks
are grouped by album; the album definitions name the tracked entity
properties.
"""
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple, Type

from sqlalchemy import delete, event, inspect
from sqlmodel import Session, SQLModel, select

from media_migrator.core.database import hooks_enabled
from media_migrator.core.logging_config import log_debug, log_info
from media_migrator.migration.pager import FastPager
from media_migrator.models import MediaFile, MediaTrack
from media_migrator.services.album_registry import AlbumRegistry, TrackedProperty

PENDING_TRACKS_KEY = "pending_media_tracks"


class TrackOperation(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class TrackChange(NamedTuple):
    operation: TrackOperation
    album: str
    entity_name: str
    entity_id: int
    property_name: str
    media_file_id: Optional[int] = None


class MediaTracker:
    """Detects and maintains media tracks."""

    def __init__(self, session: Session, album_registry: AlbumRegistry, page_size: Optional[int] = None):
        self.session = session
        self.album_registry = album_registry
        self.page_size = page_size

    def tracked_entities(self) -> Dict[Type[SQLModel], List[Tuple[str, str]]]:
        """Map tracked entity types to their (album, property) pairs."""
        tracked: Dict[Type[SQLModel], List[Tuple[str, str]]] = {}
        for definition in self.album_registry.definitions.values():
            if not definition.can_detect_tracks:
                continue
            for prop in definition.tracked:
                for name in prop.properties:
                    tracked.setdefault(prop.entity, []).append((definition.name, name))
        return tracked

    def detect_all_tracks(self, album_name: str, is_migration: bool = False) -> int:
        """
        Scan the tracked entities of an album and record their media references.

        A regular run replaces the album's tracks. During migration the
        existing tracks are kept and only missing ones are added.

        Returns:
            Number of tracks added
        """
        album = self.album_registry.get_album_by_name(album_name)
        if album is None or not album.can_detect_tracks or not album.tracked:
            return 0

        if not is_migration:
            self.session.execute(delete(MediaTrack).where(MediaTrack.album == album_name))

        added = 0
        for tracked in album.tracked:
            added += self._detect_entity_tracks(album_name, tracked)

        self.session.commit()
        log_info(f"Detected {added} media tracks", album=album_name)
        return added

    def _detect_entity_tracks(self, album_name: str, tracked: TrackedProperty) -> int:
        entity = tracked.entity
        columns = [entity.id] + [getattr(entity, name) for name in tracked.properties]
        pager = FastPager(self.session, select(*columns), self.page_size, id_column=entity.id)

        added = 0
        for page in pager:
            candidates = [
                TrackChange(TrackOperation.ADD, album_name, tracked.entity_name, row.id, name, getattr(row, name))
                for row in page
                for name in tracked.properties
                if getattr(row, name) is not None
            ]
            added += self._add_tracks(candidates)
        return added

    def apply(self, changes: Iterable[TrackChange]) -> int:
        """Apply track changes collected by the hook. Returns the number of tracks added."""
        additions = []
        for change in changes:
            if change.operation is TrackOperation.REMOVE:
                self._remove(change)
            else:
                additions.append(change)
        return self._add_tracks(additions)

    def _remove(self, change: TrackChange) -> None:
        statement = delete(MediaTrack).where(
            MediaTrack.album == change.album,
            MediaTrack.entity_name == change.entity_name,
            MediaTrack.entity_id == change.entity_id,
            MediaTrack.property_name == change.property_name,
        )
        if change.media_file_id is not None:
            statement = statement.where(MediaTrack.media_file_id == change.media_file_id)
        self.session.execute(statement)

    def _add_tracks(self, candidates: List[TrackChange]) -> int:
        if not candidates:
            return 0

        media_ids = {change.media_file_id for change in candidates}
        existing_media = set(
            self.session.exec(select(MediaFile.id).where(MediaFile.id.in_(media_ids))).all()
        )

        entity_ids = {change.entity_id for change in candidates}
        existing_tracks: Set[Tuple] = {
            (track.album, track.entity_name, track.entity_id, track.property_name, track.media_file_id)
            for track in self.session.exec(
                select(MediaTrack).where(MediaTrack.entity_id.in_(entity_ids))
            ).all()
        }

        added = 0
        for change in candidates:
            key = (change.album, change.entity_name, change.entity_id, change.property_name, change.media_file_id)
            # References to ids that are not media files (yet) are not tracked
            if change.media_file_id not in existing_media or key in existing_tracks:
                continue
            self.session.add(MediaTrack(
                media_file_id=change.media_file_id,
                album=change.album,
                entity_id=change.entity_id,
                entity_name=change.entity_name,
                property_name=change.property_name,
            ))
            existing_tracks.add(key)
            added += 1
        return added


class MediaTrackerHook:
    """
    Keeps media tracks in sync when tracked entities are flushed.

    Changes are collected after each flush and applied once the flush has
    finished; the new tracks are written by the next flush. Nothing is
    recorded while the session's ``hooks_enabled`` flag is off.
    """

    def __init__(self, tracker: MediaTracker):
        self.tracker = tracker
        self.tracked = tracker.tracked_entities()

    def register(self, session: Session) -> None:
        event.listen(session, "after_flush", self.after_flush)
        event.listen(session, "after_flush_postexec", self.after_flush_postexec)

    def unregister(self, session: Session) -> None:
        event.remove(session, "after_flush", self.after_flush)
        event.remove(session, "after_flush_postexec", self.after_flush_postexec)

    def after_flush(self, session: Session, flush_context) -> None:
        if not hooks_enabled(session):
            return

        changes: List[TrackChange] = session.info.setdefault(PENDING_TRACKS_KEY, [])

        for instance in session.new:
            for album, name in self.tracked.get(type(instance), ()):
                value = getattr(instance, name)
                if value is not None:
                    changes.append(self._change(TrackOperation.ADD, album, instance, name, value))

        for instance in session.dirty:
            properties = self.tracked.get(type(instance))
            if not properties or not session.is_modified(instance):
                continue
            state = inspect(instance)
            for album, name in properties:
                if not state.attrs[name].history.has_changes():
                    continue
                # The previous value is unknown when the attribute was expired
                changes.append(self._change(TrackOperation.REMOVE, album, instance, name))
                value = getattr(instance, name)
                if value is not None:
                    changes.append(self._change(TrackOperation.ADD, album, instance, name, value))

        for instance in session.deleted:
            for album, name in self.tracked.get(type(instance), ()):
                changes.append(self._change(TrackOperation.REMOVE, album, instance, name))

    @staticmethod
    def _change(
        operation: TrackOperation,
        album: str,
        instance: SQLModel,
        name: str,
        media_file_id: Optional[int] = None,
    ) -> TrackChange:
        state = inspect(instance)
        # Deleted and expired instances must not be refreshed mid-flush
        entity_id = state.key[1][0] if state.key is not None else instance.id
        return TrackChange(operation, album, type(instance).__name__, entity_id, name, media_file_id)

    def after_flush_postexec(self, session: Session, flush_context) -> None:
        changes = session.info.pop(PENDING_TRACKS_KEY, None)
        if not changes:
            return

        added = self.tracker.apply(changes)
        log_debug(f"Applied {len(changes)} media track changes", added=added)
