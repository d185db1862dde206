"""In-memory image library: records, label indices, and the sectioned view.

Records are grouped into sections keyed by label. Without a search query
the sections are the category labels (images with no category land in
``"other"``); with a query they are the search-term labels containing the
query. Sections sort by name, ``"other"`` always last.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from visionindex.library.discovery import discover_image_files

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
    from pathlib import Path

    from visionindex.library.records import ImageRecord

logger = logging.getLogger(__name__)

OTHER_SECTION = "other"


class SectionIndexError(IndexError):
    """A section or row index outside the current sectioned view."""


class LoadInProgressError(RuntimeError):
    """A load was requested while another one is still running."""


class IndexBusyError(RuntimeError):
    """The index was read or searched while a load is running."""


class IndexState(StrEnum):
    READY = "ready"
    LOADING = "loading"


# ---------------------------------------------------------------------------
# Load events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadStarted:
    total: int


@dataclass(frozen=True)
class LoadProgress:
    processed: int
    total: int


@dataclass(frozen=True)
class LoadCompleted:
    total: int


LoadEvent = LoadStarted | LoadProgress | LoadCompleted


def _log_failure(task: asyncio.Task[int]) -> None:
    # Retrieve the error even when nobody iterates or waits on the task.
    if not task.cancelled() and (exc := task.exception()) is not None:
        logger.warning("Library load failed: %s", exc)


class LoadTask:
    """Handle for a running load.

    Iterate it for progress events; iteration ends after ``LoadCompleted``,
    or re-raises the error that stopped the load. Only one consumer should
    iterate a task.
    """

    def __init__(self, run: Callable[[Callable[[LoadEvent], None]], Awaitable[int]]) -> None:
        self._events: asyncio.Queue[LoadEvent | None] = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(run(self._events.put_nowait))
        self._task.add_done_callback(lambda _: self._events.put_nowait(None))
        self._task.add_done_callback(_log_failure)

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> int:
        """Wait for the load to finish and return the number of records."""
        return await self._task

    def __aiter__(self) -> AsyncIterator[LoadEvent]:
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[LoadEvent]:
        while (event := await self._events.get()) is not None:
            yield event
        await self._task


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class ImageIndex:
    """Owns the loaded records and answers sectioned-view queries.

    ``load`` is the only mutation entry point. Reads and searches are
    synchronous and refused while a load is running.
    """

    def __init__(
        self,
        record_factory: Callable[[Path], ImageRecord],
        runner: Callable[..., Awaitable[Any]] | None = None,
    ) -> None:
        self._record_factory = record_factory
        self._run = runner or asyncio.to_thread
        self._records: list[ImageRecord] = []
        self._by_category: dict[str, list[int]] = {}
        self._by_search_term: dict[str, list[int]] = {}
        self._query: str | None = None
        self._state = IndexState.READY

    # -- Loading ------------------------------------------------------------

    @property
    def state(self) -> IndexState:
        return self._state

    def load(self, paths: Iterable[str | Path]) -> LoadTask:
        """Replace the library with the images found under ``paths``.

        Must be called from a running event loop. File discovery and each
        record's classification run through the runner, one at a time.

        Raises:
            LoadInProgressError: If another load has not finished yet.
            RuntimeError: If no event loop is running.
        """
        if self._state is IndexState.LOADING:
            raise LoadInProgressError("A library load is already running")
        asyncio.get_running_loop()
        paths = list(paths)
        self._state = IndexState.LOADING
        return LoadTask(lambda emit: self._load(paths, emit))

    async def _load(self, paths: list[str | Path], emit: Callable[[LoadEvent], None]) -> int:
        try:
            files: list[Path] = await self._run(discover_image_files, paths)
            logger.info("Loading %d images from %d input paths", len(files), len(paths))
            self._clear()
            emit(LoadStarted(total=len(files)))
            for processed, path in enumerate(files, start=1):
                record: ImageRecord = await self._run(self._record_factory, path)
                self._append(record)
                emit(LoadProgress(processed=processed, total=len(files)))
            emit(LoadCompleted(total=len(files)))
            logger.info("Loaded %d images into %d categories", len(self._records), len(self._by_category))
            return len(self._records)
        finally:
            self._state = IndexState.READY

    def _clear(self) -> None:
        self._records.clear()
        self._by_category.clear()
        self._by_search_term.clear()

    def _append(self, record: ImageRecord) -> None:
        position = len(self._records)
        self._records.append(record)
        for category in record.categories or (OTHER_SECTION,):
            self._by_category.setdefault(category, []).append(position)
        for term in record.search_terms:
            self._by_search_term.setdefault(term, []).append(position)

    # -- Search -------------------------------------------------------------

    @property
    def query(self) -> str | None:
        return self._query

    def search(self, query: str) -> None:
        """Filter sections to search terms containing ``query``; empty clears."""
        self._ensure_ready()
        self._query = query.lower() if query else None

    # -- Reads --------------------------------------------------------------

    @property
    def records(self) -> tuple[ImageRecord, ...]:
        self._ensure_ready()
        return tuple(self._records)

    def record_by_id(self, record_id: uuid.UUID) -> ImageRecord:
        self._ensure_ready()
        for record in self._records:
            if record.id == record_id:
                return record
        raise KeyError(f"Unknown image: {record_id}")

    def section_count(self) -> int:
        self._ensure_ready()
        return len(self._sections())

    def section_name(self, section_index: int) -> str:
        self._ensure_ready()
        names = self._sorted_section_names(self._sections())
        return names[self._check_index(section_index, len(names), "section")]

    def image_count(self, section_index: int) -> int:
        return len(self._positions(section_index))

    def image_at(self, row_index: int, section_index: int) -> ImageRecord:
        positions = self._positions(section_index)
        return self._records[positions[self._check_index(row_index, len(positions), "row")]]

    def sections(self) -> list[tuple[str, list[ImageRecord]]]:
        """The current view as ``(section name, records)`` pairs, in order."""
        self._ensure_ready()
        sections = self._sections()
        return [
            (name, [self._records[position] for position in sections[name]])
            for name in self._sorted_section_names(sections)
        ]

    # -- Internal -----------------------------------------------------------

    def _ensure_ready(self) -> None:
        if self._state is IndexState.LOADING:
            raise IndexBusyError("The library is loading")

    def _sections(self) -> Mapping[str, list[int]]:
        if self._query is None:
            return self._by_category
        return {term: positions for term, positions in self._by_search_term.items() if self._query in term.lower()}

    @staticmethod
    def _sorted_section_names(sections: Mapping[str, list[int]]) -> list[str]:
        return sorted(sections, key=lambda name: (name == OTHER_SECTION, name))

    def _positions(self, section_index: int) -> list[int]:
        self._ensure_ready()
        sections = self._sections()
        names = self._sorted_section_names(sections)
        return sections[names[self._check_index(section_index, len(names), "section")]]

    @staticmethod
    def _check_index(index: int, size: int, kind: str) -> int:
        if not 0 <= index < size:
            raise SectionIndexError(f"{kind} index {index} out of range (0..{size - 1})")
        return index
