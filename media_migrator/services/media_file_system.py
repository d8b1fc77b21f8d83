"""
File system access for the media root.

All paths handled here are logical, slash separated and relative to the media
root (e.g. ``Storage/0000/0000042.png``).
"""
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, List

from media_migrator.core.exceptions import InvalidMediaPathError
from media_migrator.core.logging_config import log_debug, log_error
from media_migrator.core.time_utils import from_timestamp

# Suffix of in-flight copies; only these are hidden from listings
COPY_TMP_SUFFIX = ".mmcopy.tmp"


@dataclass(frozen=True)
class MediaFileEntry:
    """A file below the media root."""
    path: str
    name: str
    size: int
    last_updated: datetime

    @property
    def title(self) -> str:
        """File name without extension."""
        return PurePosixPath(self.name).stem

    @property
    def extension(self) -> str:
        """Extension including the leading dot, empty if none."""
        return PurePosixPath(self.name).suffix


@dataclass(frozen=True)
class MediaFolderEntry:
    """A folder below the media root."""
    path: str
    name: str
    exists: bool = True


class LocalMediaFileSystem:
    """
    Media root on the local file system.

    Copies are atomic (written to a ``.mmcopy.tmp`` sibling, then renamed)
    and never overwrite an existing file.
    """

    def __init__(self, media_root: Path):
        self.media_root = Path(media_root).resolve()

    @staticmethod
    def combine(*parts: str) -> str:
        """Join logical path segments."""
        cleaned = [str(part).strip("/") for part in parts if part and str(part).strip("/")]
        return "/".join(cleaned)

    def get_full_path(self, path: str) -> Path:
        """
        Resolve a logical path to an absolute path inside the media root.

        Raises:
            InvalidMediaPathError: If the path escapes the media root
        """
        full_path = (self.media_root / path).resolve()
        if full_path != self.media_root and self.media_root not in full_path.parents:
            raise InvalidMediaPathError(f"Path escapes media root: {path}")
        return full_path

    def get_folder(self, path: str) -> MediaFolderEntry:
        full_path = self.get_full_path(path)
        return MediaFolderEntry(
            path=self.combine(path),
            name=PurePosixPath(self.combine(path)).name,
            exists=full_path.is_dir(),
        )

    def list_files(self, path: str) -> Iterator[MediaFileEntry]:
        """
        Iterate the files directly inside a folder.

        Entries are produced lazily; leftovers of interrupted copies
        (``.mmcopy.tmp``) are ignored.
        """
        full_path = self.get_full_path(path)
        if not full_path.is_dir():
            return

        with os.scandir(full_path) as entries:
            for entry in entries:
                if not entry.is_file() or entry.name.endswith(COPY_TMP_SUFFIX):
                    continue
                stat = entry.stat()
                yield MediaFileEntry(
                    path=self.combine(path, entry.name),
                    name=entry.name,
                    size=stat.st_size,
                    last_updated=from_timestamp(stat.st_mtime),
                )

    def list_folders(self, path: str) -> List[MediaFolderEntry]:
        """List the sub-folders of a folder, sorted by name."""
        full_path = self.get_full_path(path)
        if not full_path.is_dir():
            return []

        return [
            MediaFolderEntry(path=self.combine(path, child.name), name=child.name)
            for child in sorted(full_path.iterdir(), key=lambda p: p.name)
            if child.is_dir()
        ]

    def file_exists(self, path: str) -> bool:
        return self.get_full_path(path).is_file()

    def get_size(self, path: str) -> int:
        return self.get_full_path(path).stat().st_size

    def try_create_folder(self, path: str) -> bool:
        """
        Create a folder (and its parents) if missing.

        Returns:
            True if the folder was created
        """
        full_path = self.get_full_path(path)
        if full_path.is_dir():
            return False
        full_path.mkdir(parents=True, exist_ok=True)
        log_debug(f"Created media folder: {path}")
        return True

    def open_read(self, path: str) -> BinaryIO:
        return open(self.get_full_path(path), "rb")

    def copy_file(self, source: str, target: str) -> None:
        """
        Copy a file inside the media root.

        Raises:
            FileExistsError: If the target already exists
            OSError: If file operations fail
        """
        source_path = self.get_full_path(source)
        target_path = self.get_full_path(target)

        if target_path.exists():
            raise FileExistsError(f"Target already exists: {target}")

        target_path.parent.mkdir(parents=True, exist_ok=True)

        # Write file atomically using a temp suffix
        tmp_path = target_path.with_name(target_path.name + COPY_TMP_SUFFIX)

        try:
            shutil.copy2(source_path, tmp_path)
            tmp_path.rename(target_path)
        except Exception as e:
            # Clean up temp file on error
            if tmp_path.exists():
                tmp_path.unlink()
            log_error(e, source=source, target=target)
            raise

        log_debug(f"Copied media file: {source} -> {target}")
