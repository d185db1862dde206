"""Shared fakes and helpers for the VisionIndex tests."""

from __future__ import annotations

import asyncio
import functools
from typing import TYPE_CHECKING

import pytest
from PIL import Image

from visionindex.library.index import ImageIndex
from visionindex.library.records import build_record
from visionindex.ml.adapter import LabelSets

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path


class FakeAdapter:
    """Returns canned labels keyed by file name; unknown files get no labels."""

    def __init__(self, labels: Mapping[str, LabelSets] | None = None, failing: set[str] | None = None) -> None:
        self.labels = dict(labels or {})
        self.failing = failing or set()
        self.calls: list[str] = []

    def classify(self, path: Path) -> LabelSets:
        self.calls.append(path.name)
        if path.name in self.failing:
            raise ValueError(f"Cannot decode image: {path.name}")
        return self.labels.get(path.name, LabelSets())


def write_image(path: Path, size: tuple[int, int] = (32, 24), color: str = "red") -> Path:
    """Write a small real image file and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return path


def no_thumbnail(path: Path) -> None:
    return None


def make_index(
    adapter: FakeAdapter,
    runner: Callable[..., object] | None = None,
    thumbnailer: Callable[[Path], Image.Image | None] = no_thumbnail,
) -> ImageIndex:
    return ImageIndex(
        functools.partial(build_record, adapter=adapter, thumbnailer=thumbnailer),
        runner=runner,  # type: ignore[arg-type]
    )


class Gate:
    """Runner that holds every call until ``open()`` is called."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def open(self) -> None:
        self._event.set()

    async def __call__(self, func: Callable[..., object], *args: object) -> object:
        await self._event.wait()
        return func(*args)


@pytest.fixture()
def gate() -> Gate:
    return Gate()
