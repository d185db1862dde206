"""Immutable per-image records."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from visionindex.ml.adapter import LabelSets

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from PIL import Image

    from visionindex.ml.adapter import ClassificationAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageRecord:
    """A classified image file."""

    path: Path
    display_name: str
    thumbnail: Image.Image | None = field(default=None, repr=False, compare=False)
    categories: Mapping[str, float] = field(default_factory=dict)
    search_terms: Mapping[str, float] = field(default_factory=dict)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        # Freeze the label mappings; callers may pass plain dicts.
        object.__setattr__(self, "categories", MappingProxyType(dict(self.categories)))
        object.__setattr__(self, "search_terms", MappingProxyType(dict(self.search_terms)))


def build_record(
    path: Path,
    adapter: ClassificationAdapter,
    thumbnailer: Callable[[Path], Image.Image | None],
) -> ImageRecord:
    """Classify ``path`` and wrap the result in an :class:`ImageRecord`.

    The thumbnailer returns None for files it cannot preview. Any error
    raised by the adapter leaves both label mappings empty.
    """
    path = Path(path)
    try:
        labels = adapter.classify(path)
    except Exception:  # noqa: BLE001
        logger.warning("Classification failed for %s", path, exc_info=True)
        labels = LabelSets()

    return ImageRecord(
        path=path,
        display_name=path.name,
        thumbnail=thumbnailer(path),
        categories=labels.categories,
        search_terms=labels.search_terms,
    )
