"""
Unit tests for StorageRelocator.
"""
from datetime import datetime, timezone

import pytest

from media_migrator.core.exceptions import MediaStorageError
from media_migrator.migration.context import BatchContext
from media_migrator.migration.relocator import StorageRelocator
from media_migrator.models import Download, MediaFile
from media_migrator.services.media_file_system import MediaFileEntry
from media_migrator.services.storage_paths import StoragePathBuilder


@pytest.fixture
def relocator(file_system):
    return StorageRelocator(file_system, StoragePathBuilder(file_system, id_width=7, fanout_length=4))


@pytest.fixture
def ctx():
    return BatchContext(stage="test")


def linked(download_id: int, file_id: int, extension: str = "png"):
    file = MediaFile(id=file_id, name="x", extension=extension, mime_type="image/png")
    download = Download(id=download_id, filename="x", extension=extension, media_file_id=file_id)
    return file, download


class TestNaming:

    def test_build_file_name_pads_id(self, relocator):
        assert relocator.build_file_name(42, ".PNG", None) == "0000042.png"

    def test_build_file_name_falls_back_to_mime_type(self, relocator):
        assert relocator.build_file_name(7, "", "image/jpeg") == "0000007.jpg"

    def test_build_file_name_without_any_extension(self, relocator):
        assert relocator.build_file_name(7, None, None) == "0000007"

    def test_storage_path_creates_fanout_folder(self, relocator, media_root):
        file = MediaFile(id=12345, name="a", extension="gif")

        path = relocator.get_storage_path(file)

        assert path == "Storage/0012/0012345.gif"
        assert (media_root / "Storage" / "0012").is_dir()

    def test_storage_path_without_folder_creation(self, relocator, media_root):
        file = MediaFile(id=1, name="a", extension="gif")

        assert relocator.get_storage_path(file, create_folder=False) == "Storage/0000/0000001.gif"
        assert not (media_root / "Storage").exists()


class TestRelocateDownloads:

    def test_copies_matching_download_files(self, relocator, ctx, write_media, media_root):
        write_media("Downloads/10.png", b"ten")
        write_media("Downloads/11.png", b"eleven")
        write_media("Downloads/readme.txt", b"not an id")
        file, download = linked(10, 3)

        copied = relocator.relocate_downloads(ctx, [file], {10: download})

        assert copied == 1
        assert (media_root / "Storage/0000/0000003.png").read_bytes() == b"ten"
        assert not (media_root / "Storage/0000/0000011.png").exists()
        assert ctx.issues == []

    def test_existing_destination_is_not_overwritten(self, relocator, ctx, write_media, media_root):
        write_media("Downloads/10.png", b"new payload")
        target = write_media("Storage/0000/0000003.png", b"original")
        file, download = linked(10, 3)

        copied = relocator.relocate_downloads(ctx, [file], {10: download})

        assert copied == 0
        assert target.read_bytes() == b"original"
        assert ctx.issues == []

    def test_download_without_media_file_is_skipped(self, relocator, ctx, write_media):
        write_media("Downloads/10.png", b"ten")
        file, download = linked(10, 3)
        download.media_file_id = None

        assert relocator.relocate_downloads(ctx, [file], {10: download}) == 0

    def test_missing_downloads_folder(self, relocator, ctx):
        file, download = linked(10, 3)

        assert relocator.relocate_downloads(ctx, [file], {10: download}) == 0

    def test_copy_failure_is_recorded(self, relocator, ctx, write_media, monkeypatch):
        write_media("Downloads/10.png", b"ten")
        write_media("Downloads/12.png", b"twelve")
        file_a, download_a = linked(10, 3)
        file_b, download_b = linked(12, 4)

        original_copy = relocator.file_system.copy_file

        def flaky_copy(source, target):
            if source.endswith("10.png"):
                raise PermissionError("denied")
            return original_copy(source, target)

        monkeypatch.setattr(relocator.file_system, "copy_file", flaky_copy)

        copied = relocator.relocate_downloads(ctx, [file_a, file_b], {10: download_a, 12: download_b})

        assert copied == 1
        assert len(ctx.issues) == 1
        assert ctx.issues[0].record_id == 10


class TestUploads:

    def test_relocate_uploads(self, relocator, ctx, write_media, media_root):
        write_media("Uploaded/a.png", b"a")
        file = MediaFile(id=8, name="a.png", extension="png")
        entry = MediaFileEntry(path="Uploaded/a.png", name="a.png", size=1, last_updated=datetime.now(timezone.utc))

        assert relocator.relocate_uploads(ctx, [(file, entry)]) == 1
        assert relocator.relocate_uploads(ctx, [(file, entry)]) == 0
        assert (media_root / "Storage/0000/0000008.png").read_bytes() == b"a"

    def test_attach_inline(self, relocator, write_media):
        write_media("Uploaded/doc.txt", b"hello")
        file = MediaFile(name="doc.txt", extension="txt")
        entry = MediaFileEntry(path="Uploaded/doc.txt", name="doc.txt", size=5, last_updated=datetime.now(timezone.utc))

        storage = relocator.attach_inline(file, entry)

        assert storage.data == b"hello"
        assert file.media_storage is storage

    def test_attach_inline_missing_source(self, relocator):
        file = MediaFile(name="gone.txt", extension="txt")
        entry = MediaFileEntry(path="Uploaded/gone.txt", name="gone.txt", size=0, last_updated=datetime.now(timezone.utc))

        with pytest.raises(MediaStorageError):
            relocator.attach_inline(file, entry)

        assert file.media_storage is None
