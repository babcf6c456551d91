"""
BookWeaver — Batch Pipeline Controller
======================================
Throughput-oriented alternative to the sequential pipeline: one task per
chapter, submitted as a single bulk job.

    INIT → OUTLINE_READY → GENERATING → SUBMITTED → MERGING
         → [TRANSLATING] → COMPILING → DONE          (FAILED on any error)

Each returned chapter goes through the review graph
(consistency → edit → extract) and is stored as page 1 of its chapter.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from bookweaver import agents, config
from bookweaver.artifacts import BookArtifacts
from bookweaver.checkpoint import CheckpointStore
from bookweaver.compiler import BookCompiler
from bookweaver.errors import BatchJobError, BatchTimeoutError, CancelledByCaller, CheckpointError
from bookweaver.executor import PageExecutor
from bookweaver.graph import build_review_graph
from bookweaver.llm import BATCH_COMPLETED, BATCH_FAILED
from bookweaver.narrative import NarrativeState
from bookweaver.pipeline import BookSession, PipelineResult, PipelineStage, new_book_id
from bookweaver.state import STATUS_COMPLETED, STATUS_FAILED, STATUS_IN_PROGRESS

BATCH_PAGE = 1


@dataclass
class PollPolicy:
    """
    How long and how often to wait for a batch job.

    ``max_wait=None`` waits indefinitely. Each wait multiplies the interval
    by ``backoff`` up to ``max_interval``. ``on_poll(status, elapsed)`` is
    called after every status check and may raise ``CancelledByCaller``.
    """

    interval: float = config.BATCH_POLL_SECONDS
    max_wait: Optional[float] = config.BATCH_MAX_WAIT_SECONDS
    backoff: float = config.BATCH_POLL_BACKOFF
    max_interval: float = config.BATCH_POLL_MAX_INTERVAL
    sleep: Callable[[float], None] = time.sleep
    on_poll: Optional[Callable[[str, float], None]] = None

    def wait_for(self, service, job_handle: str) -> float:
        """Block until the job completes. Returns the total time waited."""
        elapsed = 0.0
        interval = self.interval
        while True:
            status = service.poll_status(job_handle)
            if self.on_poll:
                self.on_poll(status, elapsed)
            if status == BATCH_COMPLETED:
                return elapsed
            if status == BATCH_FAILED:
                raise BatchJobError(job_handle, "job reported failed status")
            if self.max_wait is not None and elapsed >= self.max_wait:
                raise BatchTimeoutError(job_handle, elapsed)

            print(f"[Batch] ⏳ Job {job_handle} {status}, checking again in {interval:.0f}s")
            self.sleep(interval)
            elapsed += interval
            interval = min(interval * self.backoff, self.max_interval)


class BatchPipeline:
    def __init__(
        self,
        service,
        store: CheckpointStore | None = None,
        root: Path | None = None,
        poll_policy: PollPolicy | None = None,
        download_cover: bool = config.DOWNLOAD_COVER,
    ):
        self.service = service
        self.root = Path(root) if root else None
        self.store = store or CheckpointStore(self.root)
        self.poll_policy = poll_policy or PollPolicy()
        self.download_cover = download_cover
        self.executor = PageExecutor(service)
        self.stage = PipelineStage.INIT

    def _enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        print(f"[Batch] → {stage.name}")

    def run(
        self,
        theme: str,
        chapters: int,
        pages_per_chapter: int = BATCH_PAGE,
        book_id: str | None = None,
        language: str = config.DEFAULT_LANGUAGE,
        title: str | None = None,
        genre: str | None = None,
    ) -> PipelineResult:
        """``pages_per_chapter`` is accepted for interface parity; batch chapters are one page."""
        agents.validate_language(language)

        book_id = book_id or new_book_id()
        artifacts = BookArtifacts(book_id, self.root, download_cover=self.download_cover)
        session = BookSession(book_id, self.service, self.store, artifacts)

        self._enter(PipelineStage.INIT)
        state = session.load_or_init(theme, language=language, title=title, genre=genre)
        reports: Dict[int, str] = {}

        try:
            session.ensure_outline(state, theme, chapters)
            self._enter(PipelineStage.OUTLINE_READY)
            session.ensure_cover(state, theme)

            self._enter(PipelineStage.GENERATING)
            state.set_status(STATUS_IN_PROGRESS)
            pending = self.pending_chapters(state, chapters)
            if pending:
                reports = self._generate(session, artifacts, state, theme, pending)
            else:
                print("[Batch] All chapters already merged, nothing to submit")

            if language != config.DEFAULT_LANGUAGE:
                self._enter(PipelineStage.TRANSLATING)
                self._translate(session, artifacts, state, language)

            state.set_status(STATUS_COMPLETED)
            session.checkpoint(state)
        except CancelledByCaller:
            print("[Batch] ⏹️  Stopped by caller")
            session.final_checkpoint(state)
            raise
        except Exception as e:
            self._enter(PipelineStage.FAILED)
            print(f"[Batch] ❌ {type(e).__name__}: {e}")
            state.set_status(STATUS_FAILED)
            session.final_checkpoint(state)
            raise

        self._enter(PipelineStage.COMPILING)
        compiled = BookCompiler(artifacts).compile(state)
        self._enter(PipelineStage.DONE)
        return PipelineResult.from_state(book_id, state, compiled, consistency_reports=reports)

    @staticmethod
    def pending_chapters(state: NarrativeState, chapters: int) -> List[int]:
        last = state.progress["lastCompletedChapter"]
        return [c for c in range(1, chapters + 1) if not (c <= last and state.content.get(c))]

    def build_tasks(self, state: NarrativeState, theme: str, chapters: List[int]) -> List[dict]:
        """One chat-completion task per chapter, all sharing the content produced so far."""
        content = state.snapshot()["content"]
        model = getattr(self.service, "model", None) or config.get_model()
        return [
            {
                "custom_id": f"chapter-{chapter}",
                "method": "POST",
                "url": "/v1/chat/completions",
                "body": {
                    "model": model,
                    "temperature": config.TEMPERATURE,
                    "max_tokens": config.CHAPTER_MAX_TOKENS,
                    "messages": [
                        {"role": "system", "content": agents.BOOK_SYSTEM_PROMPT},
                        {
                            "role": "user",
                            "content": agents.render_batch_chapter_prompt(
                                chapter, theme, state.outline, content
                            ),
                        },
                    ],
                },
            }
            for chapter in chapters
        ]

    def _generate(
        self,
        session: BookSession,
        artifacts: BookArtifacts,
        state: NarrativeState,
        theme: str,
        pending: List[int],
    ) -> Dict[int, str]:
        job_handle = self.service.submit_batch(self.build_tasks(state, theme, pending))
        self._enter(PipelineStage.SUBMITTED)
        self.poll_policy.wait_for(self.service, job_handle)

        results = {r["task_id"]: r["response_text"] for r in self.service.fetch_results(job_handle)}
        self._enter(PipelineStage.MERGING)
        review_graph = build_review_graph(self.service, self.executor, state)

        reports = {}
        for chapter in pending:
            draft = results.get(f"chapter-{chapter}")
            if not draft:
                raise BatchJobError(job_handle, f"no result for chapter {chapter}")

            reviewed = review_graph.invoke({"chapter": chapter, "draft": draft})
            reports[chapter] = reviewed["consistency_report"]
            edited = reviewed["edited"]

            artifacts.write_page(chapter, BATCH_PAGE, edited, subtitle=state.chapter_title(chapter))
            marker = state.narrative_marker()
            state.record_page(chapter, BATCH_PAGE, edited)
            extracted = reviewed["extracted"]
            state.merge_extracted_metadata(extracted["characters"], extracted["plotPoints"], chapter)

            candidate = state.candidate_progress(
                max(state.progress["lastCompletedChapter"], chapter),
                len(state.content[chapter]),
            )
            try:
                session.checkpoint(state, candidate)
            except CheckpointError:
                state.discard_page(chapter, BATCH_PAGE)
                state.rollback_narrative(marker)
                raise
            state.commit_progress(candidate)
        return reports

    def _translate(
        self,
        session: BookSession,
        artifacts: BookArtifacts,
        state: NarrativeState,
        language: str,
    ) -> None:
        """
        Translates page 1 of every chapter (the whole chapter for batch books).
        Each chapter is checkpointed together with its ``translatedChapters``
        entry, so a resumed run never translates a page twice.
        """
        done = set(state.metadata.get("translatedChapters") or [])
        if state.metadata.get("translationLanguage") != language:
            done = set()
        for chapter, pages in state.ordered_content():
            first_page = dict(pages).get(1)
            if first_page is None or chapter in done:
                continue
            translated = agents.translate_content(self.service, first_page, language)
            artifacts.write_page(chapter, 1, translated, subtitle=state.chapter_title(chapter))

            previous = dict(state.metadata)
            state.record_page(chapter, 1, translated)
            state.metadata["translationLanguage"] = language
            state.metadata["translatedChapters"] = sorted(done | {chapter})
            try:
                session.checkpoint(state)
            except CheckpointError:
                state.record_page(chapter, 1, first_page)
                state.metadata = previous
                raise
            done.add(chapter)
            print(f"[Batch] 🌐 Chapter {chapter} translated to {language}")
        state.metadata["language"] = language
