"""Display rows for an image's categories."""

from __future__ import annotations

import string
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class LabelRow:
    """One humanized label with its confidence."""

    label: str
    confidence: float
    id: uuid.UUID = field(default_factory=uuid.uuid4, compare=False)


def format_category_name(name: str) -> str:
    """``"hot_dog"`` -> ``"Hot Dog"``."""
    return string.capwords(name.replace("_", " "))


def format_details(categories: Mapping[str, float]) -> list[LabelRow]:
    """Rows sorted by confidence descending, ties by label ascending."""
    rows = [LabelRow(label=format_category_name(name), confidence=float(confidence)) for name, confidence in categories.items()]
    rows.sort(key=lambda row: (-row.confidence, row.label))
    return rows
