"""
BookWeaver — Narrative State
============================
In-memory aggregate of everything needed to keep generated pages
consistent: outline, known characters, plot points and the page map.

One ``NarrativeState`` is owned by one controller for the duration of a
run. The checkpoint store is its only persistence boundary:

    state = NarrativeState.from_checkpoint(store.load(book_id))
    ...
    store.save(book_id, state.snapshot())
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bookweaver.state import (
    PROGRESS_STATUSES,
    BookState,
    ProgressState,
    empty_outline,
    empty_progress,
)


@dataclass
class Character:
    description: str
    first_appearance_chapter: int
    appearances: set[int] = field(default_factory=set)

    def to_record(self) -> dict:
        return {
            "description": self.description,
            "firstAppearanceChapter": self.first_appearance_chapter,
            "appearances": sorted(self.appearances),
        }

    @classmethod
    def from_record(cls, record: dict) -> "Character":
        first = int(record.get("firstAppearanceChapter", 0) or 0)
        appearances = {int(c) for c in record.get("appearances", []) or []}
        if not appearances and first:
            appearances.add(first)
        return cls(
            description=str(record.get("description", "") or ""),
            first_appearance_chapter=first,
            appearances=appearances,
        )


@dataclass
class NarrativeState:
    progress: ProgressState = field(default_factory=empty_progress)
    characters: Dict[str, Character] = field(default_factory=dict)
    plot_points: set[str] = field(default_factory=set)
    content: Dict[int, Dict[int, str]] = field(default_factory=dict)
    outline: Dict[str, Any] = field(default_factory=empty_outline)
    metadata: Dict[str, Any] = field(default_factory=dict)

    # ──────────────────────────────────────────
    # CHECKPOINT CONVERSION
    # ──────────────────────────────────────────
    @classmethod
    def from_checkpoint(cls, record: Optional[BookState]) -> "NarrativeState":
        state = cls()
        if record:
            state.merge_checkpoint(record)
        return state

    def merge_checkpoint(self, record: BookState) -> None:
        """Replace every in-memory field wholesale from a loaded checkpoint."""
        progress = record.get("progress") or empty_progress()
        status = progress.get("status", "not_started")
        self.progress = {
            "lastCompletedChapter": int(progress.get("lastCompletedChapter", 0)),
            "lastCompletedPage": int(progress.get("lastCompletedPage", 0)),
            "status": status if status in PROGRESS_STATUSES else "not_started",
        }

        self.characters = {}
        for entry in record.get("characters") or []:
            name, details = entry[0], entry[1]
            self.characters[str(name)] = Character.from_record(details or {})

        self.plot_points = {str(p) for p in record.get("plotPoints") or []}

        self.content = {}
        for chapter, pages in (record.get("content") or {}).items():
            self.content[int(chapter)] = {
                int(page): text for page, text in (pages or {}).items()
            }

        outline = record.get("outline")
        if isinstance(outline, str):
            # Older checkpoints stored the outline as plain text
            outline = {**empty_outline(), "raw": outline}
        self.outline = outline or empty_outline()
        self.metadata = dict(record.get("metadata") or {})

    def snapshot(self, progress: Optional[ProgressState] = None) -> BookState:
        """Materialize a checkpoint-ready record (optionally with candidate progress)."""
        return {
            "progress": dict(progress or self.progress),
            "characters": [
                [name, character.to_record()]
                for name, character in self.characters.items()
            ],
            "plotPoints": sorted(self.plot_points),
            "content": {
                str(chapter): {str(page): pages[page] for page in sorted(pages)}
                for chapter, pages in sorted(self.content.items())
            },
            "outline": self.outline,
            "metadata": dict(self.metadata),
        }

    # ──────────────────────────────────────────
    # CONTENT
    # ──────────────────────────────────────────
    def record_page(self, chapter: int, page: int, content: str) -> None:
        """Insert/overwrite one page. Progress is NOT advanced here."""
        self.content.setdefault(chapter, {})[page] = content

    def discard_page(self, chapter: int, page: int) -> None:
        pages = self.content.get(chapter)
        if pages is None:
            return
        pages.pop(page, None)
        if not pages:
            del self.content[chapter]

    def has_page(self, chapter: int, page: int) -> bool:
        return page in self.content.get(chapter, {})

    def previous_pages(self, chapter: int, before_page: int) -> List[str]:
        """Full text of pages 1..before_page-1 of a chapter, in page order."""
        pages = self.content.get(chapter, {})
        return [pages[p] for p in sorted(pages) if p < before_page]

    def ordered_content(self) -> List[Tuple[int, List[Tuple[int, str]]]]:
        return [
            (chapter, [(page, pages[page]) for page in sorted(pages)])
            for chapter, pages in sorted(self.content.items())
        ]

    # ──────────────────────────────────────────
    # PROGRESS
    # ──────────────────────────────────────────
    def candidate_progress(self, chapter: int, page: int, status: str = "in_progress") -> ProgressState:
        return {
            "lastCompletedChapter": chapter,
            "lastCompletedPage": page,
            "status": status,
        }

    def commit_progress(self, progress: ProgressState) -> None:
        self.progress = dict(progress)

    def set_status(self, status: str) -> None:
        self.progress = {**self.progress, "status": status}

    def resume_point(self, pages_per_chapter: int) -> Tuple[int, int]:
        """(chapter, page) of the next unit to generate."""
        chapter = self.progress["lastCompletedChapter"]
        page = self.progress["lastCompletedPage"]
        if chapter < 1:
            return 1, 1
        if page < pages_per_chapter:
            return chapter, page + 1
        return chapter + 1, 1

    # ──────────────────────────────────────────
    # CHARACTERS & PLOT POINTS
    # ──────────────────────────────────────────
    def merge_extracted_metadata(
        self,
        characters: Iterable[dict],
        plot_points: Iterable[str],
        chapter: int,
    ) -> None:
        """
        Append-only merge: new characters are inserted with this chapter as
        their first appearance; known characters only gain an appearance.
        Descriptions are never overwritten.
        """
        for item in characters or []:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if not isinstance(name, str) or not name.strip():
                continue
            name = name.strip()
            existing = self.characters.get(name)
            if existing is None:
                details = item.get("details", "")
                if not isinstance(details, str):
                    details = json.dumps(details, ensure_ascii=False)
                self.characters[name] = Character(
                    description=details,
                    first_appearance_chapter=chapter,
                    appearances={chapter},
                )
            else:
                existing.appearances.add(chapter)

        for point in plot_points or []:
            if isinstance(point, str) and point:
                self.plot_points.add(point)

    def narrative_marker(self) -> Tuple[Dict[str, Character], set]:
        """Copy of characters and plot points, for rolling back an unpersisted unit."""
        return copy.deepcopy(self.characters), set(self.plot_points)

    def rollback_narrative(self, marker: Tuple[Dict[str, Character], set]) -> None:
        self.characters, self.plot_points = marker

    def characters_table(self) -> List[list]:
        return [[name, c.to_record()] for name, c in self.characters.items()]

    # ──────────────────────────────────────────
    # OUTLINE
    # ──────────────────────────────────────────
    def chapter_title(self, chapter: int) -> str:
        entry = self.outline.get("chapters", {}).get(str(chapter)) or {}
        return entry.get("title", "")

    def outline_excerpt(self, chapter: int) -> str:
        entry = self.outline.get("chapters", {}).get(str(chapter))
        if entry:
            title = entry.get("title", "")
            summary = entry.get("summary", "")
            return f"{title}: {summary}" if title else summary
        return self.outline.get("raw", "") or "No outline available"

    def has_outline(self) -> bool:
        return bool(self.outline.get("chapters") or self.outline.get("raw"))
