"""
BookWeaver — Pipeline Capability
================================
What both controllers (sequential and batch) have in common, shared by
composition rather than inheritance:

    PipelineController   the interface: run(theme, chapters, ...) → PipelineResult
    PipelineStage        states a run moves through
    BookSession          per-run helpers around one book's state:
                         load-or-init, ensure outline, ensure cover, checkpoint
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from bookweaver import agents, config
from bookweaver.artifacts import BookArtifacts
from bookweaver.checkpoint import CheckpointStore
from bookweaver.compiler import CompiledBook
from bookweaver.errors import CheckpointError
from bookweaver.narrative import NarrativeState
from bookweaver.state import ProgressState

ProgressCallback = Callable[[int, int], None]


class PipelineStage(str, Enum):
    INIT = "init"
    OUTLINE_READY = "outline_ready"
    GENERATING = "generating"
    SUBMITTED = "submitted"
    MERGING = "merging"
    TRANSLATING = "translating"
    COMPILING = "compiling"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineResult:
    book_id: str
    outline: Dict[str, Any]
    cover_image: Optional[str]
    content: Dict[str, Dict[str, str]]
    metadata: Dict[str, Any]
    progress: ProgressState
    compiled: Optional[CompiledBook] = None
    consistency_reports: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_state(cls, book_id: str, state: NarrativeState, compiled: CompiledBook | None = None, **extra) -> "PipelineResult":
        snapshot = state.snapshot()
        return cls(
            book_id=book_id,
            outline=snapshot["outline"],
            cover_image=snapshot["metadata"].get("coverImage"),
            content=snapshot["content"],
            metadata=snapshot["metadata"],
            progress=snapshot["progress"],
            compiled=compiled,
            **extra,
        )

    def to_dict(self) -> dict:
        return {
            "book_id": self.book_id,
            "outline": self.outline,
            "cover_image": self.cover_image,
            "content": self.content,
            "metadata": self.metadata,
            "progress": self.progress,
            "compiled": self.compiled.to_dict() if self.compiled else None,
            "consistency_reports": {str(k): v for k, v in self.consistency_reports.items()},
        }


class PipelineController(Protocol):
    stage: PipelineStage

    def run(
        self,
        theme: str,
        chapters: int,
        pages_per_chapter: int = config.DEFAULT_PAGES_PER_CHAPTER,
        book_id: str | None = None,
    ) -> PipelineResult:
        ...


def new_book_id() -> str:
    return f"book-{uuid.uuid4().hex[:8]}"


def initial_metadata(theme: str, language: str, title: str | None = None, genre: str | None = None) -> Dict[str, Any]:
    return {
        "title": title or theme.strip().title(),
        "author": config.DEFAULT_AUTHOR,
        "genre": genre or "Fiction",
        "theme": theme,
        "language": language,
        "createdDate": datetime.now(timezone.utc).isoformat(),
        "coverImage": None,
    }


class BookSession:
    """Per-run helpers around one book's checkpoint, artifacts and service."""

    def __init__(self, book_id: str, service, store: CheckpointStore, artifacts: BookArtifacts):
        self.book_id = book_id
        self.service = service
        self.store = store
        self.artifacts = artifacts

    def load_or_init(
        self,
        theme: str,
        language: str = config.DEFAULT_LANGUAGE,
        title: str | None = None,
        genre: str | None = None,
    ) -> NarrativeState:
        self.artifacts.ensure_directories()
        state = NarrativeState.from_checkpoint(self.store.load(self.book_id))
        if state.progress["lastCompletedChapter"] or state.content:
            print(
                f"[Session] 📂 Resuming '{self.book_id}' after chapter "
                f"{state.progress['lastCompletedChapter']}, page {state.progress['lastCompletedPage']}"
            )
        else:
            print(f"[Session] 🆕 Starting new book '{self.book_id}'")
        if not state.metadata:
            state.metadata = initial_metadata(theme, language, title, genre)
        return state

    def ensure_outline(self, state: NarrativeState, theme: str, chapters: int) -> None:
        """The outline is produced once per book and never regenerated."""
        if state.has_outline():
            return
        state.outline = agents.create_outline(self.service, theme, chapters)
        self.checkpoint(state)

    def ensure_cover(self, state: NarrativeState, theme: str) -> None:
        if state.metadata.get("coverImage"):
            print("[Session] 🖼️  Cover already present, skipping")
            return
        url = self.service.generate_image(agents.render_cover_prompt(theme), config.COVER_IMAGE_SIZE)
        state.metadata["coverImage"] = url
        asset = self.artifacts.save_cover(url)
        if asset:
            state.metadata["coverAsset"] = asset
        self.checkpoint(state)

    def checkpoint(self, state: NarrativeState, progress: ProgressState | None = None) -> None:
        self.store.save(self.book_id, state.snapshot(progress))

    def final_checkpoint(self, state: NarrativeState) -> bool:
        """Best-effort write on an error path; the triggering error is what propagates."""
        try:
            self.checkpoint(state)
        except CheckpointError as e:
            print(f"[Session] ❌ Final checkpoint failed: {e}")
            return False
        return True
