"""
Shared fixtures: in-memory SQLite sessions and temporary media roots.
"""
from io import BytesIO
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image
from sqlmodel import Session

from media_migrator.core.database import build_engine, create_db_and_tables
from media_migrator.migration.migrator import MediaMigrator
from media_migrator.services.media_file_system import LocalMediaFileSystem


@pytest.fixture
def engine():
    """Create an in-memory SQLite database with all tables."""
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = Session(engine)
    yield session
    session.close()


@pytest.fixture
def media_root(tmp_path) -> Path:
    """Create a temporary media root directory."""
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def file_system(media_root) -> LocalMediaFileSystem:
    return LocalMediaFileSystem(media_root)


@pytest.fixture(autouse=True)
def reset_executed_flag():
    MediaMigrator.executed = False
    yield
    MediaMigrator.executed = False


@pytest.fixture
def png_bytes() -> Callable[..., bytes]:
    """Factory producing PNG payloads of a given size."""

    def _create(width: int = 4, height: int = 3) -> bytes:
        buffer = BytesIO()
        Image.new("RGB", (width, height), color=(200, 30, 30)).save(buffer, format="PNG")
        return buffer.getvalue()

    return _create


@pytest.fixture
def write_media(media_root) -> Callable[[str, bytes], Path]:
    """Write a file below the media root."""

    def _write(path: str, data: bytes) -> Path:
        target = media_root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target

    return _write
