"""Tests for expanding files and folders into image paths."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import write_image

from visionindex.library.discovery import discover_image_files, is_image_file, is_package


def _names(paths: list[Path], root: Path) -> list[str]:
    return [p.relative_to(root).as_posix() for p in paths]


class TestIsImageFile:
    @pytest.mark.parametrize("name", ["a.png", "b.JPG", "c.jpeg", "d.gif", "e.tiff", "f.heic", "g.webp"])
    def test_image_extensions(self, name: str) -> None:
        assert is_image_file(Path(name))

    @pytest.mark.parametrize("name", ["notes.txt", "movie.mp4", "archive.zip", "noextension"])
    def test_other_files(self, name: str) -> None:
        assert not is_image_file(Path(name))

    def test_package_extensions(self) -> None:
        assert is_package(Path("Photos Library.photoslibrary"))
        assert is_package(Path("Tool.APP"))
        assert not is_package(Path("holiday"))


class TestDiscoverImageFiles:
    def test_recurses_depth_first_in_name_order(self, tmp_path: Path) -> None:
        write_image(tmp_path / "b.png")
        write_image(tmp_path / "a" / "z.png")
        write_image(tmp_path / "a" / "deeper" / "y.jpg")
        write_image(tmp_path / "c" / "x.png")

        found = discover_image_files([tmp_path])

        assert _names(found, tmp_path) == ["a/deeper/y.jpg", "a/z.png", "b.png", "c/x.png"]

    def test_keeps_input_order(self, tmp_path: Path) -> None:
        second = write_image(tmp_path / "second.png")
        first = write_image(tmp_path / "first.png")

        assert discover_image_files([second, first]) == [second, first]

    def test_accepts_strings(self, tmp_path: Path) -> None:
        image = write_image(tmp_path / "one.png")
        assert discover_image_files([str(tmp_path)]) == [image]

    def test_drops_non_images(self, tmp_path: Path) -> None:
        write_image(tmp_path / "keep.png")
        (tmp_path / "readme.txt").write_text("hello")
        (tmp_path / "clip.mp4").write_bytes(b"\x00")

        assert _names(discover_image_files([tmp_path, tmp_path / "readme.txt"]), tmp_path) == ["keep.png"]

    def test_skips_hidden_entries(self, tmp_path: Path) -> None:
        write_image(tmp_path / ".hidden.png")
        write_image(tmp_path / ".cache" / "thumb.png")
        write_image(tmp_path / "visible.png")

        assert _names(discover_image_files([tmp_path]), tmp_path) == ["visible.png"]

    def test_skips_package_descendants(self, tmp_path: Path) -> None:
        write_image(tmp_path / "Viewer.app" / "Contents" / "icon.png")
        write_image(tmp_path / "Library.photoslibrary" / "originals" / "img.jpg")
        write_image(tmp_path / "photo.png")

        assert _names(discover_image_files([tmp_path]), tmp_path) == ["photo.png"]

    def test_explicit_package_input_is_expanded(self, tmp_path: Path) -> None:
        bundle = tmp_path / "Library.photoslibrary"
        write_image(bundle / "img.jpg")

        assert _names(discover_image_files([bundle]), tmp_path) == ["Library.photoslibrary/img.jpg"]

    def test_missing_paths_are_ignored(self, tmp_path: Path) -> None:
        assert discover_image_files([tmp_path / "nope", tmp_path / "gone.png"]) == []

    def test_unreadable_directory_contributes_nothing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        locked = tmp_path / "locked"
        write_image(locked / "secret.png")
        write_image(tmp_path / "open.png")
        original_iterdir = Path.iterdir

        def iterdir(self: Path):  # type: ignore[no-untyped-def]
            if self == locked:
                raise PermissionError(13, "Permission denied", str(self))
            return original_iterdir(self)

        monkeypatch.setattr(Path, "iterdir", iterdir)

        assert _names(discover_image_files([tmp_path]), tmp_path) == ["open.png"]

    def test_symlink_cycle_is_not_followed(self, tmp_path: Path) -> None:
        lib = tmp_path / "lib"
        write_image(lib / "a.png")
        (lib / "loop").symlink_to(lib, target_is_directory=True)

        assert _names(discover_image_files([lib]), tmp_path) == ["lib/a.png"]

    def test_symlinked_directory_inside_folder_is_skipped(self, tmp_path: Path) -> None:
        write_image(tmp_path / "elsewhere" / "b.png")
        lib = tmp_path / "lib"
        write_image(lib / "a.png")
        (lib / "linked").symlink_to(tmp_path / "elsewhere", target_is_directory=True)

        assert _names(discover_image_files([lib]), tmp_path) == ["lib/a.png"]

    def test_explicit_symlinked_directory_input_is_expanded(self, tmp_path: Path) -> None:
        write_image(tmp_path / "real" / "c.png")
        link = tmp_path / "link"
        link.symlink_to(tmp_path / "real", target_is_directory=True)

        assert _names(discover_image_files([link]), tmp_path) == ["link/c.png"]
