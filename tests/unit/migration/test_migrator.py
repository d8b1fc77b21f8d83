"""
End-to-end tests for the media migrator against an in-memory database and a
temporary media root.
"""
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlalchemy import event
from sqlmodel import select

from media_migrator.core.database import HOOKS_ENABLED_KEY
from media_migrator.core.exceptions import MigrationStateError, StorageProviderNotFoundError
from media_migrator.migration.migrator import (
    DEFAULT_MEDIA_SETTINGS,
    STAGE_MIGRATE_DOWNLOADS,
    STAGE_MIGRATE_UPLOADED_FILES,
    MediaMigrator,
    build_migrator,
    run_migration,
)
from media_migrator.models import (
    Download,
    MediaFile,
    MediaFolder,
    MediaStorage,
    MediaTrack,
    MediaType,
    MessageTemplate,
    MigrationState,
    Setting,
)
from media_migrator.services.album_registry import (
    ALBUM_DOWNLOADS,
    ALBUM_FILES,
    ALBUM_MESSAGES,
    SYSTEM_ALBUMS,
    AlbumRegistry,
)
from media_migrator.services.media_storage_provider import STORAGE_PROVIDER_SETTING


def use_provider(session, key: str) -> None:
    session.add(Setting(name=STORAGE_PROVIDER_SETTING, value=key))
    session.commit()


def album_id(session, name: str) -> int:
    return session.exec(
        select(MediaFolder.id).where(MediaFolder.name == name, MediaFolder.parent_id.is_(None))
    ).one()


def snapshot(session, media_root: Path) -> dict:
    session.expire_all()
    return {
        "files": [
            (f.id, f.name, f.extension, f.media_type, f.size, f.width, f.height, f.folder_id, f.version)
            for f in session.exec(select(MediaFile).order_by(MediaFile.id)).all()
        ],
        "folders": [
            (f.id, f.name, f.parent_id, f.is_album)
            for f in session.exec(select(MediaFolder).order_by(MediaFolder.id)).all()
        ],
        "downloads": [
            (d.id, d.media_file_id) for d in session.exec(select(Download).order_by(Download.id)).all()
        ],
        "templates": [
            tuple(t.attachment_ids) for t in session.exec(select(MessageTemplate).order_by(MessageTemplate.id)).all()
        ],
        "tracks": len(session.exec(select(MediaTrack)).all()),
        "settings": len(session.exec(select(Setting)).all()),
        "payloads": {
            path.relative_to(media_root).as_posix(): path.read_bytes()
            for path in sorted((media_root / "Storage").rglob("*"))
            if path.is_file()
        } if (media_root / "Storage").exists() else {},
    }


class TestLifecycle:

    def test_completed_run(self, session, media_root):
        migrator = build_migrator(session, media_root=media_root)

        result = migrator.migrate()

        assert result.state == MigrationState.COMPLETED
        assert migrator.state == MigrationState.COMPLETED
        assert MediaMigrator.executed is True
        assert [stage.name for stage in result.stages] == [
            "create_albums",
            "create_settings",
            "migrate_downloads",
            "migrate_media_files",
            "migrate_uploaded_files",
            "detect_tracks",
        ]
        assert all(stage.duration_ms >= 0 for stage in result.stages)
        assert HOOKS_ENABLED_KEY not in session.info

    def test_registers_albums_and_settings(self, session, media_root):
        build_migrator(session, media_root=media_root).migrate()

        albums = session.exec(select(MediaFolder.name).where(MediaFolder.is_album.is_(True))).all()
        assert set(albums) == {"content", "catalog", "downloads", "messages", "files"}
        for name, value in DEFAULT_MEDIA_SETTINGS.items():
            assert session.exec(select(Setting.value).where(Setting.name == name)).one() == value

    def test_existing_settings_are_not_overwritten(self, session, media_root):
        session.add(Setting(name="MediaSettings.ImageTypes", value="png"))
        session.commit()

        build_migrator(session, media_root=media_root).migrate()

        assert session.exec(
            select(Setting.value).where(Setting.name == "MediaSettings.ImageTypes")
        ).one() == "png"

    def test_second_call_on_same_instance_is_rejected(self, session, media_root):
        migrator = build_migrator(session, media_root=media_root)
        migrator.migrate()

        with pytest.raises(MigrationStateError):
            migrator.migrate()

    def test_failure_marks_run_failed_and_reraises(self, session, media_root):
        session.info[HOOKS_ENABLED_KEY] = True
        migrator = build_migrator(session, media_root=media_root)
        migrator.tracker = MagicMock()
        migrator.tracker.detect_all_tracks.side_effect = RuntimeError("tracker down")

        with pytest.raises(RuntimeError, match="tracker down"):
            migrator.migrate()

        assert migrator.state == MigrationState.FAILED
        assert migrator.result.state == MigrationState.FAILED
        assert MediaMigrator.executed is True
        assert session.info[HOOKS_ENABLED_KEY] is True
        with pytest.raises(MigrationStateError):
            migrator.migrate()

    def test_unknown_provider_is_rejected(self, session, media_root):
        use_provider(session, "cloud")

        with pytest.raises(StorageProviderNotFoundError):
            build_migrator(session, media_root=media_root)

    def test_run_migration_runs_once(self, session, media_root, monkeypatch):
        monkeypatch.setattr("media_migrator.migration.migrator.settings.media_root", str(media_root))

        assert run_migration(session) is not None
        assert run_migration(session) is None


class TestDownloads:

    def test_undefined_filename_is_skipped(self, session, media_root):
        session.add(Download(id=1, filename="undefined", extension="png", content_type="image/png"))
        session.add(Download(id=2, filename="real", extension="pdf", content_type="application/pdf"))
        session.commit()

        result = build_migrator(session, media_root=media_root).migrate()

        files = session.exec(select(MediaFile)).all()
        assert [f.name for f in files] == ["real.pdf"]
        assert session.get(Download, 1).media_file_id is None
        assert result.stage(STAGE_MIGRATE_DOWNLOADS).counters["skipped"] == 1

    def test_url_downloads_and_empty_names_are_not_migrated(self, session, media_root):
        session.add(Download(id=1, filename="remote", extension="png", use_download_url=True, download_url="http://x/y.png"))
        session.add(Download(id=2, filename="", extension="png"))
        session.add(Download(id=3, filename="noext", extension=""))
        session.commit()

        build_migrator(session, media_root=media_root).migrate()

        assert session.exec(select(MediaFile)).all() == []

    def test_uppercase_extension_with_existing_destination(self, session, media_root, write_media, png_bytes):
        use_provider(session, "filesystem")
        payload = png_bytes(12, 7)
        session.add(Download(id=1, filename="picture", extension=".PNG", content_type="image/png"))
        session.commit()
        write_media("Downloads/1.png", payload)
        # Media file 1 will be stored here
        destination = write_media("Storage/0000/0000001.png", payload)
        before = destination.stat().st_mtime_ns

        result = build_migrator(session, media_root=media_root).migrate()

        file = session.exec(select(MediaFile)).one()
        assert file.id == 1
        assert file.extension == "png"
        assert file.media_type == MediaType.IMAGE
        assert file.name.endswith(".png")
        assert (file.width, file.height, file.pixel_size) == (12, 7, 84)
        assert file.version == 1
        assert file.folder_id == album_id(session, ALBUM_DOWNLOADS)
        assert destination.read_bytes() == payload
        assert destination.stat().st_mtime_ns == before
        downloads_stage = result.stage(STAGE_MIGRATE_DOWNLOADS)
        assert downloads_stage.issues == []
        assert downloads_stage.counters.get("copied", 0) == 0

    def test_filesystem_payloads_are_relocated(self, session, media_root, write_media, png_bytes):
        use_provider(session, "filesystem")
        payload = png_bytes(3, 3)
        session.add(Download(id=7, filename="logo", extension="png", content_type="image/png"))
        session.add(Download(id=8, filename="terms", extension="pdf", content_type="application/pdf"))
        session.commit()
        write_media("Downloads/7.png", payload)
        write_media("Downloads/8.pdf", b"%PDF-1.4 terms")

        result = build_migrator(session, media_root=media_root).migrate()

        logo = session.get(Download, 7).media_file
        terms = session.get(Download, 8).media_file
        assert (media_root / f"Storage/0000/{logo.id:07d}.png").read_bytes() == payload
        assert (media_root / f"Storage/0000/{terms.id:07d}.pdf").read_bytes() == b"%PDF-1.4 terms"
        assert logo.size == len(payload)
        assert terms.media_type == MediaType.DOCUMENT
        assert result.stage(STAGE_MIGRATE_DOWNLOADS).counters["copied"] == 2

    def test_database_payloads_are_classified(self, session, media_root, png_bytes):
        payload = png_bytes(9, 4)
        storage = MediaStorage(data=payload)
        session.add(storage)
        session.commit()
        session.add(Download(id=1, filename="inline", extension="png", content_type="image/png", media_storage_id=storage.id))
        session.commit()

        build_migrator(session, media_root=media_root).migrate()

        file = session.get(Download, 1).media_file
        assert file.media_storage_id == storage.id
        assert file.size == len(payload)
        assert (file.width, file.height) == (9, 4)
        assert not (media_root / "Storage").exists()

    def test_message_attachments_are_rewritten(self, session, media_root):
        for download_id in (10, 20, 30):
            session.add(Download(
                id=download_id,
                filename=f"doc{download_id}",
                extension="pdf",
                content_type="application/pdf",
                # Not migrated: served from a URL
                use_download_url=download_id == 20,
            ))
        session.add(MessageTemplate(name="order", attachment1_file_id=10, attachment2_file_id=20, attachment3_file_id=30))
        session.commit()

        result = build_migrator(session, media_root=media_root, page_size=1).migrate()

        template = session.exec(select(MessageTemplate)).one()
        names = {f.id: f.name for f in session.exec(select(MediaFile)).all()}
        assert names[template.attachment1_file_id] == "doc10.pdf"
        assert template.attachment2_file_id == 20
        assert names[template.attachment3_file_id] == "doc30.pdf"
        assert session.get(Download, 10) is None
        assert session.get(Download, 30) is None
        assert session.get(Download, 20) is not None
        messages = album_id(session, ALBUM_MESSAGES)
        assert {f.folder_id for f in session.exec(select(MediaFile)).all()} == {messages}
        assert result.stage(STAGE_MIGRATE_DOWNLOADS).counters["rewritten"] == 2

    def test_working_set_is_bounded_by_page_size(self, session, media_root):
        for download_id in range(1, 21):
            session.add(Download(id=download_id, filename=f"f{download_id}", extension="txt", content_type="text/plain"))
        session.commit()

        migrator = build_migrator(session, media_root=media_root, page_size=3)
        create = migrator.transformer.create_from_download
        sizes = []

        def tracking_create(download, folder_id):
            sizes.append(len(session.identity_map))
            return create(download, folder_id)

        migrator.transformer.create_from_download = tracking_create
        migrator.migrate()

        assert len(sizes) == 20
        assert max(sizes) <= 2 * 3
        assert len(session.exec(select(MediaFile)).all()) == 20


class TestUploadedFiles:

    def test_folder_tree_is_created_parent_first(self, session, media_root, write_media, png_bytes):
        use_provider(session, "filesystem")
        payload_a = png_bytes(2, 2)
        write_media("Uploaded/A/a.png", payload_a)
        write_media("Uploaded/A/B/b.txt", b"bee")

        inserted = []

        def check_parent(mapper, connection, target):
            if target.parent_id is not None:
                parent = connection.execute(
                    select(MediaFolder.id).where(MediaFolder.id == target.parent_id)
                ).first()
                assert parent is not None
            inserted.append(target.name)

        event.listen(MediaFolder, "before_insert", check_parent)
        try:
            result = build_migrator(session, media_root=media_root).migrate()
        finally:
            event.remove(MediaFolder, "before_insert", check_parent)

        files_album = album_id(session, ALBUM_FILES)
        folder_a = session.exec(select(MediaFolder).where(MediaFolder.name == "A")).one()
        folder_b = session.exec(select(MediaFolder).where(MediaFolder.name == "B")).one()
        assert folder_a.parent_id == files_album
        assert folder_b.parent_id == folder_a.id
        assert folder_a.id < folder_b.id
        assert inserted.index("A") < inserted.index("B")

        file_a = session.exec(select(MediaFile).where(MediaFile.name == "a.png")).one()
        file_b = session.exec(select(MediaFile).where(MediaFile.name == "b.txt")).one()
        assert file_a.folder_id == folder_a.id
        assert file_b.folder_id == folder_b.id
        assert file_a.version == file_b.version == 2
        assert (file_a.width, file_a.height) == (2, 2)
        assert file_b.media_type == MediaType.TEXT
        path_a = media_root / f"Storage/0000/{file_a.id:07d}.png"
        path_b = media_root / f"Storage/0000/{file_b.id:07d}.txt"
        assert path_a != path_b
        assert path_a.read_bytes() == payload_a
        assert path_b.read_bytes() == b"bee"
        assert result.stage(STAGE_MIGRATE_UPLOADED_FILES).issues == []

    def test_database_provider_stores_payload_inline(self, session, media_root, write_media):
        write_media("Uploaded/notes.txt", b"inline please")

        build_migrator(session, media_root=media_root).migrate()

        file = session.exec(select(MediaFile).where(MediaFile.name == "notes.txt")).one()
        assert file.folder_id == album_id(session, ALBUM_FILES)
        assert file.media_storage.data == b"inline please"
        assert not (media_root / "Storage").exists()

    def test_missing_upload_folder_skips_stage(self, session, media_root):
        result = build_migrator(session, media_root=media_root).migrate()

        stage = result.stage(STAGE_MIGRATE_UPLOADED_FILES)
        assert stage.skipped is True
        assert len(stage.issues) == 1
        assert result.state == MigrationState.COMPLETED

    def test_unregistered_album_skips_stage(self, session, media_root, write_media):
        write_media("Uploaded/a.txt", b"a")
        migrator = build_migrator(session, media_root=media_root)
        migrator.album_registry = AlbumRegistry(
            session,
            definitions=[album for album in SYSTEM_ALBUMS if album.name != ALBUM_FILES],
        )

        result = migrator.migrate()

        stage = result.stage(STAGE_MIGRATE_UPLOADED_FILES)
        assert stage.skipped is True
        assert ALBUM_FILES in stage.issues[0].reason
        assert session.exec(select(MediaFile)).all() == []

    def test_user_temp_files_are_imported(self, session, media_root, write_media):
        write_media("Uploaded/report.tmp", b"draft")
        write_media("Uploaded/ok.txt", b"ok")

        build_migrator(session, media_root=media_root).migrate()

        names = session.exec(select(MediaFile.name).order_by(MediaFile.name)).all()
        assert names == ["ok.txt", "report.tmp"]

    def test_existing_files_are_looked_up_per_chunk(self, session, media_root, write_media):
        for name in ("a.txt", "b.txt", "c.txt"):
            write_media(f"Uploaded/{name}", name.encode())
        build_migrator(session, media_root=media_root).migrate()

        migrator = build_migrator(session, media_root=media_root, page_size=1)
        found = migrator._find_uploaded(album_id(session, ALBUM_FILES), ["b.txt", "missing.txt"])

        assert set(found) == {"b.txt"}

        MediaMigrator.executed = False
        result = migrator.migrate()
        stage = result.stage(STAGE_MIGRATE_UPLOADED_FILES)
        assert stage.counters["skipped"] == 3
        assert stage.counters.get("created", 0) == 0
        assert len(session.exec(select(MediaFile)).all()) == 3


class TestIdempotency:

    def seed(self, session, write_media, png_bytes):
        use_provider(session, "filesystem")
        for download_id, ext in ((1, "png"), (2, "pdf"), (3, "png")):
            session.add(Download(id=download_id, filename=f"d{download_id}", extension=ext, content_type=None))
        session.add(MessageTemplate(name="welcome", attachment1_file_id=2))
        session.commit()
        write_media("Downloads/1.png", png_bytes(5, 5))
        write_media("Downloads/2.pdf", b"%PDF-1.4")
        write_media("Downloads/3.png", png_bytes(6, 2))
        write_media("Uploaded/top.png", png_bytes(1, 1))
        write_media("Uploaded/sub/inner.txt", b"inner")

    def test_second_run_changes_nothing(self, session, media_root, write_media, png_bytes):
        self.seed(session, write_media, png_bytes)

        build_migrator(session, media_root=media_root, page_size=2).migrate()
        first = snapshot(session, media_root)

        MediaMigrator.executed = False
        second_result = build_migrator(session, media_root=media_root, page_size=2).migrate()
        second = snapshot(session, media_root)

        assert first == second
        assert len(first["files"]) == 5
        assert first["tracks"] > 0
        for stage in second_result.stages:
            assert stage.counters.get("created", 0) == 0
            assert stage.counters.get("copied", 0) == 0
            assert stage.counters.get("processed", 0) == 0
            assert stage.counters.get("rewritten", 0) == 0
            assert stage.counters.get("folders", 0) == 0
            assert stage.counters.get("tracks", 0) == 0

    def test_interrupted_upload_copy_is_completed(self, session, media_root, write_media, png_bytes):
        self.seed(session, write_media, png_bytes)
        build_migrator(session, media_root=media_root).migrate()

        top = session.exec(select(MediaFile).where(MediaFile.name == "top.png")).one()
        stored = media_root / f"Storage/0000/{top.id:07d}.png"
        stored.unlink()

        MediaMigrator.executed = False
        result = build_migrator(session, media_root=media_root).migrate()

        assert stored.exists()
        assert result.stage(STAGE_MIGRATE_UPLOADED_FILES).counters["copied"] == 1
        assert len(session.exec(select(MediaFile)).all()) == 5

    def test_interrupted_download_copy_is_completed(self, session, media_root, write_media, png_bytes):
        self.seed(session, write_media, png_bytes)
        migrator = build_migrator(session, media_root=media_root)
        migrator.relocator.relocate_downloads = MagicMock(side_effect=RuntimeError("disk gone"))

        with pytest.raises(RuntimeError, match="disk gone"):
            migrator.migrate()

        linked = session.exec(select(Download).where(Download.media_file_id.is_not(None))).all()
        assert len(linked) == 3
        assert not (media_root / "Storage").exists()

        MediaMigrator.executed = False
        result = build_migrator(session, media_root=media_root).migrate()

        picture = session.exec(select(MediaFile).where(MediaFile.name == "d1.png")).one()
        assert picture.version == 1
        assert picture.size > 0
        assert (picture.width, picture.height) == (5, 5)
        assert (media_root / f"Storage/0000/{picture.id:07d}.png").exists()
        document = session.exec(select(MediaFile).where(MediaFile.name == "d2.pdf")).one()
        assert (media_root / f"Storage/0000/{document.id:07d}.pdf").read_bytes() == b"%PDF-1.4"
        assert session.exec(select(MessageTemplate)).one().attachment1_file_id == document.id
        assert result.stage(STAGE_MIGRATE_DOWNLOADS).counters["copied"] == 3
        assert result.stage(STAGE_MIGRATE_DOWNLOADS).counters.get("created", 0) == 0

    def test_interrupted_rewrite_is_resumed(self, session, media_root):
        session.add(Download(id=10, filename="doc10", extension="pdf", content_type="application/pdf"))
        session.add(MessageTemplate(name="order", attachment1_file_id=10))
        session.commit()
        migrator = build_migrator(session, media_root=media_root)
        migrator.rewriter.rewrite = MagicMock(side_effect=RuntimeError("connection lost"))

        with pytest.raises(RuntimeError, match="connection lost"):
            migrator.migrate()

        assert session.exec(select(MessageTemplate)).one().attachment1_file_id == 10
        assert session.get(Download, 10).media_file_id is not None

        MediaMigrator.executed = False
        result = build_migrator(session, media_root=media_root).migrate()

        session.expire_all()
        file = session.exec(select(MediaFile)).one()
        assert file.name == "doc10.pdf"
        assert file.folder_id == album_id(session, ALBUM_MESSAGES)
        assert session.exec(select(MessageTemplate)).one().attachment1_file_id == file.id
        assert session.get(Download, 10) is None
        assert result.stage(STAGE_MIGRATE_DOWNLOADS).counters["rewritten"] == 1
