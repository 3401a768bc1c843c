"""Tests for the review flow, gallery and share surfaces."""

import asyncio
import os
import subprocess

import pytest

from geocam.errors import GallerySaveFailed
from geocam.gallery import DirectoryGallery
from geocam.models import CapturedPhoto
from geocam.review import (
    CommandShareSurface, LoggingShareSurface, PhotoReview, share_surface_from_config,
)
from tests.conftest import write_jpeg


@pytest.fixture
def photo(tmp_path) -> CapturedPhoto:
    path = write_jpeg(str(tmp_path / "photo_1.jpg"), (64, 48))
    return CapturedPhoto(path, 1)


def test_gallery_copies_and_indexes(tmp_path, photo) -> None:
    gallery = DirectoryGallery(str(tmp_path / "gallery"), str(tmp_path / "db" / "gallery.db"))

    stored = gallery.persist(photo.file_path)
    os.remove(photo.file_path)

    assert os.path.exists(stored)
    assert os.path.dirname(stored) == str(tmp_path / "gallery")
    items = gallery.items()
    assert len(items) == 1
    assert items[0]["stored_path"] == stored
    assert items[0]["source_path"] == photo.file_path


def test_gallery_names_are_unique(tmp_path, photo) -> None:
    gallery = DirectoryGallery(str(tmp_path / "gallery"), str(tmp_path / "gallery.db"))

    first = gallery.persist(photo.file_path)
    second = gallery.persist(photo.file_path)

    assert first != second
    assert [i["id"] for i in gallery.items()] == [1, 2]


def test_confirm_wraps_store_errors(tmp_path) -> None:
    gallery = DirectoryGallery(str(tmp_path / "gallery"), str(tmp_path / "gallery.db"))
    review = PhotoReview(gallery, LoggingShareSurface())

    with pytest.raises(GallerySaveFailed):
        asyncio.run(review.confirm(CapturedPhoto(str(tmp_path / "missing.png"), 1)))


def test_retake_tolerates_missing_file(tmp_path, photo) -> None:
    review = PhotoReview(DirectoryGallery(str(tmp_path / "g"), str(tmp_path / "g.db")), LoggingShareSurface())

    asyncio.run(review.retake(photo))
    asyncio.run(review.retake(photo))

    assert not os.path.exists(photo.file_path)


def test_command_share_surface_launches_detached(monkeypatch) -> None:
    calls = []

    def fake_popen(argv, **kwargs):
        calls.append((argv, kwargs))

    monkeypatch.setattr(subprocess, "Popen", fake_popen)

    CommandShareSurface("xdg-open --verbose").present(["/tmp/a.png"])

    argv, kwargs = calls[0]
    assert argv == ["xdg-open", "--verbose", "/tmp/a.png"]
    assert kwargs["start_new_session"] is True


def test_share_surface_from_config() -> None:
    assert isinstance(share_surface_from_config({"share": {"command": "xdg-open"}}), CommandShareSurface)
    assert isinstance(share_surface_from_config({"share": {"command": ""}}), LoggingShareSurface)


def test_share_never_raises(photo) -> None:
    class Broken:
        def present(self, file_paths):
            raise OSError("xdg-open not found")

    review = PhotoReview(None, Broken())

    asyncio.run(review.share(photo))
