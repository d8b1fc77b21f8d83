"""
Media migration orchestrator.

Runs the migration stages strictly in order:

1. create_albums: register the system albums
2. create_settings: register the default media type extension settings
3. migrate_downloads: legacy downloads to media file stubs, payload relocation
   and rewriting of dependent references
4. migrate_media_files: finalize every stub below version 1
5. migrate_uploaded_files: import the ``Uploaded`` tree into the files album
6. detect_tracks: record media tracks for every album

Every stage is safe to re-run; records already at a stage's target version are
skipped.
"""
import time
from functools import partial
from itertools import islice
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Iterable, Iterator, List, Optional, TypeVar

from sqlmodel import Session, select

from media_migrator.core.config import settings
from media_migrator.core.database import HOOKS_ENABLED_KEY, get_session_context
from media_migrator.core.exceptions import AlbumNotFoundError, MediaStorageError, MigrationStateError
from media_migrator.core.logging_config import log_error, log_info, setup_logging
from media_migrator.migration.context import BatchContext, MigrationResult, StageResult
from media_migrator.migration.pager import FastPager
from media_migrator.migration.relocator import StorageRelocator
from media_migrator.migration.rewriter import ReferenceIndex, ReferenceRewriter
from media_migrator.migration.scope import BatchTransactionScope
from media_migrator.migration.transformer import (
    VERSION_CLASSIFIED,
    VERSION_STUB,
    VERSION_UPLOADED,
    RecordTransformer,
)
from media_migrator.models import Download, MediaFile, MediaType, MigrationState
from media_migrator.services.album_registry import (
    ALBUM_DOWNLOADS,
    ALBUM_FILES,
    ALBUM_MESSAGES,
    AlbumRegistry,
)
from media_migrator.services.folder_service import MediaFolderService
from media_migrator.services.media_file_system import LocalMediaFileSystem, MediaFolderEntry
from media_migrator.services.media_storage_provider import (
    STORAGE_PROVIDER_SETTING,
    MediaStorageProvider,
    create_default_registry,
)
from media_migrator.services.media_tracker import MediaTracker
from media_migrator.services.media_type_resolver import MediaTypeResolver
from media_migrator.services.settings_store import SettingsStore
from media_migrator.services.storage_paths import StoragePathBuilder

T = TypeVar("T")

STAGE_CREATE_ALBUMS = "create_albums"
STAGE_CREATE_SETTINGS = "create_settings"
STAGE_MIGRATE_DOWNLOADS = "migrate_downloads"
STAGE_MIGRATE_MEDIA_FILES = "migrate_media_files"
STAGE_MIGRATE_UPLOADED_FILES = "migrate_uploaded_files"
STAGE_DETECT_TRACKS = "detect_tracks"

UPLOADED_FOLDER = "Uploaded"
UNDEFINED_FILENAME = "undefined"

DEFAULT_MEDIA_SETTINGS = {
    "MediaSettings.ImageTypes": MediaType.IMAGE.default_extensions,
    "MediaSettings.VideoTypes": MediaType.VIDEO.default_extensions,
    "MediaSettings.AudioTypes": MediaType.AUDIO.default_extensions,
    "MediaSettings.DocumentTypes": MediaType.DOCUMENT.default_extensions,
    "MediaSettings.TextTypes": MediaType.TEXT.default_extensions,
}

_MISSING = object()


def _chunks(items: Iterable[T], size: int) -> Iterator[List[T]]:
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


class MediaMigrator:
    """
    Migrates the legacy media model into media files, folders and albums.

    An instance runs once: ``migrate()`` moves it from idle to running and
    then to completed or failed. ``MediaMigrator.executed`` is set when any
    run ends.
    """

    executed: ClassVar[bool] = False

    def __init__(
        self,
        session: Session,
        album_registry: AlbumRegistry,
        settings_store: SettingsStore,
        file_system: LocalMediaFileSystem,
        storage_provider: MediaStorageProvider,
        transformer: RecordTransformer,
        relocator: StorageRelocator,
        rewriter: ReferenceRewriter,
        tracker: MediaTracker,
        folder_service: MediaFolderService,
        page_size: Optional[int] = None,
    ):
        self.session = session
        self.album_registry = album_registry
        self.settings_store = settings_store
        self.file_system = file_system
        self.storage_provider = storage_provider
        self.transformer = transformer
        self.relocator = relocator
        self.rewriter = rewriter
        self.tracker = tracker
        self.folder_service = folder_service
        self.page_size = page_size or settings.migration_batch_size

        self.state = MigrationState.IDLE
        self.result: Optional[MigrationResult] = None

    def migrate(self) -> MigrationResult:
        """
        Run all stages.

        Raises:
            MigrationStateError: If this instance already ran
        """
        if self.state != MigrationState.IDLE:
            raise MigrationStateError(f"Migration cannot start in state '{self.state.value}'")

        self.state = MigrationState.RUNNING
        self.result = MigrationResult(state=self.state)
        started = time.perf_counter()

        # New entities are added throughout; no entity hooks during migration
        previous_hooks = self.session.info.get(HOOKS_ENABLED_KEY, _MISSING)
        self.session.info[HOOKS_ENABLED_KEY] = False

        log_info(
            "Media migration started",
            provider=self.storage_provider.key,
            media_root=self.file_system.media_root,
            page_size=self.page_size,
        )

        current_stage = None
        try:
            for current_stage, action in (
                (STAGE_CREATE_ALBUMS, self.create_albums),
                (STAGE_CREATE_SETTINGS, self.create_settings),
                (STAGE_MIGRATE_DOWNLOADS, self.migrate_downloads),
                (STAGE_MIGRATE_MEDIA_FILES, self.migrate_media_files),
                (STAGE_MIGRATE_UPLOADED_FILES, self.migrate_uploaded_files),
                (STAGE_DETECT_TRACKS, self.detect_tracks),
            ):
                self._execute(current_stage, action)

            self.folder_service.clear_cache()
            self.state = MigrationState.COMPLETED
        except Exception as e:
            self.state = MigrationState.FAILED
            log_error(e, stage=current_stage)
            raise
        finally:
            if previous_hooks is _MISSING:
                self.session.info.pop(HOOKS_ENABLED_KEY, None)
            else:
                self.session.info[HOOKS_ENABLED_KEY] = previous_hooks

            self.result.state = self.state
            self.result.duration_ms = (time.perf_counter() - started) * 1000
            MediaMigrator.executed = True

        log_info(
            f"Media migration completed in {self.result.duration_ms:.0f} ms",
            issues=len(self.result.issues),
        )
        return self.result

    def _execute(self, name: str, action: Callable[[StageResult], None]) -> None:
        stage = StageResult(name=name)
        self.result.stages.append(stage)

        started = time.perf_counter()
        try:
            action(stage)
        finally:
            stage.duration_ms = (time.perf_counter() - started) * 1000
            log_info(f"MediaMigrator > {name}: {stage.duration_ms:.0f} ms.", **stage.counters)

    def create_albums(self, stage: StageResult) -> None:
        # Enforce full album registration
        albums = self.album_registry.get_all_albums()
        stage.increment("albums", len(albums))

    def create_settings(self, stage: StageResult) -> None:
        stage.increment("added", self.settings_store.add_defaults(DEFAULT_MEDIA_SETTINGS))

    def migrate_downloads(self, stage: StageResult) -> None:
        try:
            downloads_album = self.album_registry.require_album(ALBUM_DOWNLOADS)
            messages_album = self.album_registry.require_album(ALBUM_MESSAGES)
        except AlbumNotFoundError as e:
            stage.skip(str(e))
            return

        index = self.rewriter.build_index(self.session)
        is_fs_provider = self.storage_provider.is_file_system

        statement = select(Download).where(
            Download.media_file_id.is_(None),
            Download.use_download_url.is_(False),
            Download.filename.is_not(None),
            Download.filename != "",
            Download.extension.is_not(None),
            Download.extension != "",
        )
        pager = FastPager(self.session, statement, self.page_size)

        with BatchTransactionScope(
            self.session,
            hooks_enabled=False,
            auto_commit=False,
            auto_detect_changes=False,
        ) as scope:
            if is_fs_provider:
                self._resume_relocations(stage, scope)
            self._resume_rewrites(stage, index, messages_album.id)

            for downloads in pager:
                ctx = BatchContext(stage=stage.name)
                migrated = []

                for download in downloads:
                    if download.filename == UNDEFINED_FILENAME:
                        stage.increment("skipped")
                        continue

                    # Attachments of message templates go to the messages album
                    folder_id = messages_album.id if download.id in index else downloads_album.id
                    file = self.transformer.create_from_download(download, folder_id)
                    download.media_file = file
                    migrated.append((download, file))

                scope.commit()

                for download, file in migrated:
                    ctx.reference_map[download.id] = file.id
                stage.increment("created", len(migrated))

                if is_fs_provider and migrated:
                    copied = self.relocator.relocate_downloads(
                        ctx,
                        [file for _, file in migrated],
                        {download.id: download for download in downloads},
                    )
                    stage.increment("copied", copied)

                if len(index):
                    stage.increment("rewritten", self.rewriter.rewrite(self.session, index, ctx))

                stage.absorb(ctx)
                scope.detach()

    def _resume_relocations(self, stage: StageResult, scope: BatchTransactionScope) -> None:
        """Copy the payloads of downloads linked by an interrupted run but never relocated."""
        statement = (
            select(Download)
            .join(MediaFile, MediaFile.id == Download.media_file_id)
            .where(MediaFile.version == VERSION_STUB)
        )
        for downloads in FastPager(self.session, statement, self.page_size):
            ctx = BatchContext(stage=stage.name)
            file_ids = [download.media_file_id for download in downloads]
            files = self.session.exec(select(MediaFile).where(MediaFile.id.in_(file_ids))).all()

            copied = self.relocator.relocate_downloads(
                ctx,
                files,
                {download.id: download for download in downloads},
            )
            stage.increment("copied", copied)
            stage.absorb(ctx)
            scope.detach()

    def _resume_rewrites(self, stage: StageResult, index: ReferenceIndex, messages_folder_id: int) -> None:
        """Rewrite references to downloads migrated by an interrupted run."""
        if not len(index):
            return

        statement = (
            select(Download.id, Download.media_file_id)
            .join(MediaFile, MediaFile.id == Download.media_file_id)
            .where(MediaFile.folder_id == messages_folder_id)
        )
        ctx = BatchContext(stage=stage.name)
        for page in FastPager(self.session, statement, self.page_size, id_column=Download.id):
            for row in page:
                if row.id in index:
                    ctx.reference_map[row.id] = row.media_file_id

        if ctx.reference_map:
            stage.increment("rewritten", self.rewriter.rewrite(self.session, index, ctx))
        stage.absorb(ctx)

    def migrate_media_files(self, stage: StageResult) -> None:
        statement = select(MediaFile).where(MediaFile.version < VERSION_CLASSIFIED)
        pager = FastPager(self.session, statement, self.page_size)

        with BatchTransactionScope(self.session, hooks_enabled=False, auto_commit=False) as scope:
            for files in pager:
                ctx = BatchContext(stage=stage.name)
                for file in files:
                    if self.transformer.finalize_stub(file, ctx):
                        stage.increment("processed")

                scope.commit()
                stage.absorb(ctx)
                scope.detach()

    def migrate_uploaded_files(self, stage: StageResult) -> None:
        try:
            album = self.album_registry.require_album(ALBUM_FILES)
        except AlbumNotFoundError as e:
            stage.skip(str(e))
            return

        root_folder = self.file_system.get_folder(UPLOADED_FOLDER)
        if not root_folder.exists:
            stage.skip(f"Folder '{UPLOADED_FOLDER}' does not exist")
            return

        with BatchTransactionScope(
            self.session,
            hooks_enabled=False,
            auto_commit=False,
            auto_detect_changes=False,
        ) as scope:
            self._process_upload_folder(scope, stage, root_folder, album.id)

    def _process_upload_folder(
        self,
        scope: BatchTransactionScope,
        stage: StageResult,
        folder: MediaFolderEntry,
        media_folder_id: int,
    ) -> None:
        is_fs_provider = self.storage_provider.is_file_system

        for entries in _chunks(self.file_system.list_files(folder.path), self.page_size):
            ctx = BatchContext(stage=stage.name)
            pairs = []
            existing = self._find_uploaded(media_folder_id, [entry.name for entry in entries])

            for entry in entries:
                if entry.name in existing:
                    stage.increment("skipped")
                    if is_fs_provider:
                        # Payload copy of an interrupted run may be missing
                        pairs.append((existing[entry.name], entry))
                    continue

                file = self.transformer.create_from_upload(
                    entry,
                    media_folder_id,
                    ctx,
                    open_source=partial(self.file_system.open_read, entry.path),
                )
                if is_fs_provider:
                    pairs.append((file, entry))
                else:
                    try:
                        self.relocator.attach_inline(file, entry)
                    except MediaStorageError as e:
                        ctx.add_issue(f"Failed to read uploaded file: {e}", path=entry.path)
                        continue

                self.session.add(file)
                stage.increment("created")

            try:
                scope.commit()
                if pairs:
                    stage.increment("copied", self.relocator.relocate_uploads(ctx, pairs))
            finally:
                stage.absorb(ctx)
                scope.detach()

        for child in self.file_system.list_folders(folder.path):
            child_id = self.folder_service.find_child(media_folder_id, child.name)
            if child_id is None:
                # Persisted before any of its files reference it
                child_id = self.folder_service.create_folder(child.name, media_folder_id).id
                stage.increment("folders")
            self._process_upload_folder(scope, stage, child, child_id)

    def _find_uploaded(self, media_folder_id: int, names: List[str]) -> Dict[str, Any]:
        """Rows of the already imported files of a folder among ``names``."""
        statement = select(MediaFile.id, MediaFile.name, MediaFile.extension, MediaFile.mime_type).where(
            MediaFile.folder_id == media_folder_id,
            MediaFile.version >= VERSION_UPLOADED,
            MediaFile.name.in_(names),
        )
        return {row.name: row for row in self.session.exec(statement).all()}

    def detect_tracks(self, stage: StageResult) -> None:
        for album_name in sorted(self.album_registry.get_album_names(include_system=True)):
            stage.increment("tracks", self.tracker.detect_all_tracks(album_name, is_migration=True))


def build_migrator(
    session: Session,
    media_root: Optional[Path] = None,
    page_size: Optional[int] = None,
) -> MediaMigrator:
    """Wire a migrator with the default collaborators from settings."""
    file_system = LocalMediaFileSystem(media_root or settings.media_root)
    path_builder = StoragePathBuilder(file_system)
    settings_store = SettingsStore(session)

    provider_key = settings_store.get(STORAGE_PROVIDER_SETTING, settings.media_storage_provider)
    storage_provider = create_default_registry(session, file_system, path_builder).resolve(provider_key)

    album_registry = AlbumRegistry(session)
    return MediaMigrator(
        session=session,
        album_registry=album_registry,
        settings_store=settings_store,
        file_system=file_system,
        storage_provider=storage_provider,
        transformer=RecordTransformer(storage_provider, MediaTypeResolver()),
        relocator=StorageRelocator(file_system, path_builder),
        rewriter=ReferenceRewriter(page_size=page_size),
        tracker=MediaTracker(session, album_registry, page_size=page_size),
        folder_service=MediaFolderService(session),
        page_size=page_size,
    )


def run_migration(session: Optional[Session] = None) -> Optional[MigrationResult]:
    """
    Run the media migration once per process.

    Returns:
        The migration result, or None if a migration already ran
    """
    if MediaMigrator.executed:
        log_info("Media migration already executed, skipping")
        return None

    if session is not None:
        return build_migrator(session).migrate()

    setup_logging()
    with get_session_context() as own_session:
        return build_migrator(own_session).migrate()
