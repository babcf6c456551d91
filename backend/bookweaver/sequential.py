"""
BookWeaver — Sequential Pipeline Controller
===========================================
Page-by-page generation with a checkpoint after every unit:

    INIT → OUTLINE_READY → GENERATING → COMPILING → DONE
                 └──────────────┴──→ FAILED

Resumes from the last persisted (chapter, page). Progress counters only
advance once the checkpoint holding the unit has been written.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from bookweaver import config
from bookweaver.artifacts import BookArtifacts
from bookweaver.checkpoint import CheckpointStore
from bookweaver.compiler import BookCompiler
from bookweaver.errors import CancelledByCaller, CheckpointError
from bookweaver.executor import PageExecutor
from bookweaver.narrative import NarrativeState
from bookweaver.pipeline import (
    BookSession,
    PipelineResult,
    PipelineStage,
    ProgressCallback,
    new_book_id,
)
from bookweaver.state import STATUS_COMPLETED, STATUS_FAILED, STATUS_IN_PROGRESS


class SequentialPipeline:
    def __init__(
        self,
        service,
        store: CheckpointStore | None = None,
        root: Path | None = None,
        progress_callback: Optional[ProgressCallback] = None,
        download_cover: bool = config.DOWNLOAD_COVER,
    ):
        self.service = service
        self.root = Path(root) if root else None
        self.store = store or CheckpointStore(self.root)
        self.progress_callback = progress_callback
        self.download_cover = download_cover
        self.executor = PageExecutor(service)
        self.stage = PipelineStage.INIT

    def _enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        print(f"[Sequential] → {stage.name}")

    def run(
        self,
        theme: str,
        chapters: int,
        pages_per_chapter: int = config.DEFAULT_PAGES_PER_CHAPTER,
        book_id: str | None = None,
        title: str | None = None,
        genre: str | None = None,
    ) -> PipelineResult:
        book_id = book_id or new_book_id()
        artifacts = BookArtifacts(book_id, self.root, download_cover=self.download_cover)
        session = BookSession(book_id, self.service, self.store, artifacts)

        self._enter(PipelineStage.INIT)
        state = session.load_or_init(theme, title=title, genre=genre)

        try:
            session.ensure_outline(state, theme, chapters)
            self._enter(PipelineStage.OUTLINE_READY)
            session.ensure_cover(state, theme)

            self._enter(PipelineStage.GENERATING)
            state.set_status(STATUS_IN_PROGRESS)
            self._generate(session, artifacts, state, chapters, pages_per_chapter)

            state.set_status(STATUS_COMPLETED)
            session.checkpoint(state)
        except CancelledByCaller:
            print(f"[Sequential] ⏹️  Stopped by caller at chapter {state.progress['lastCompletedChapter']}, "
                  f"page {state.progress['lastCompletedPage']}")
            session.final_checkpoint(state)
            raise
        except Exception as e:
            self._enter(PipelineStage.FAILED)
            print(f"[Sequential] ❌ {type(e).__name__}: {e}")
            state.set_status(STATUS_FAILED)
            session.final_checkpoint(state)
            raise

        self._enter(PipelineStage.COMPILING)
        compiled = BookCompiler(artifacts).compile(state)
        self._enter(PipelineStage.DONE)
        return PipelineResult.from_state(book_id, state, compiled)

    def _generate(
        self,
        session: BookSession,
        artifacts: BookArtifacts,
        state: NarrativeState,
        chapters: int,
        pages_per_chapter: int,
    ) -> None:
        start_chapter, start_page = state.resume_point(pages_per_chapter)
        for chapter in range(start_chapter, chapters + 1):
            first_page = start_page if chapter == start_chapter else 1
            print(f"\n📖 Chapter {chapter}/{chapters}: {state.chapter_title(chapter) or 'untitled'}")
            for page in range(first_page, pages_per_chapter + 1):
                self._run_unit(session, artifacts, state, chapter, page)
            # Chapter-level durability boundary
            session.checkpoint(state)

    def _run_unit(
        self,
        session: BookSession,
        artifacts: BookArtifacts,
        state: NarrativeState,
        chapter: int,
        page: int,
    ) -> None:
        if self.progress_callback:
            self.progress_callback(chapter, page)

        print(f"   ✍️  Writing chapter {chapter}, page {page}...")
        result = self.executor.run(chapter, page, state)
        artifacts.write_page(chapter, page, result.content, subtitle=state.chapter_title(chapter))

        marker = state.narrative_marker()
        state.record_page(chapter, page, result.content)
        state.merge_extracted_metadata(
            result.metadata["characters"], result.metadata["plotPoints"], chapter
        )
        candidate = state.candidate_progress(chapter, page)
        try:
            session.checkpoint(state, candidate)
        except CheckpointError:
            state.discard_page(chapter, page)
            state.rollback_narrative(marker)
            raise
        state.commit_progress(candidate)
