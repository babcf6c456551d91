from __future__ import annotations

import json
import tempfile
from pathlib import Path
from unittest import TestCase

from bookweaver.checkpoint import CheckpointStore
from bookweaver.errors import CancelledByCaller, CheckpointError, GenerationServiceError
from bookweaver.narrative import NarrativeState
from bookweaver.pipeline import PipelineStage
from bookweaver.sequential import SequentialPipeline

from fakes import COVER_URL, GHOST_REPLY, FakeGenerationService, RecordingStore


class SequentialPipelineTests(TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _pipeline(self, service, store=None, callback=None):
        return SequentialPipeline(
            service,
            store=store or RecordingStore(self.root),
            root=self.root,
            progress_callback=callback,
            download_cover=False,
        )

    def test_two_by_two_book_checkpoints_every_page_and_chapter(self):
        service = FakeGenerationService()
        store = RecordingStore(self.root)
        seen = []

        pipeline = self._pipeline(service, store, callback=lambda c, p: seen.append((c, p)))
        result = pipeline.run("a lighthouse", 2, 2, book_id="lamp")

        self.assertEqual(seen, [(1, 1), (1, 2), (2, 1), (2, 2)])
        self.assertEqual(service.page_calls, [(1, 1), (1, 2), (2, 1), (2, 2)])
        self.assertGreaterEqual(len(store.saved), 6)

        page_saves = [p for p in store.saved_progress() if p[2] == "in_progress"]
        for unit in [(1, 1), (1, 2), (2, 1), (2, 2)]:
            self.assertIn(unit + ("in_progress",), page_saves)
        # Each chapter boundary repeats the chapter's last page save
        self.assertEqual(page_saves.count((1, 2, "in_progress")), 2)
        self.assertEqual(page_saves.count((2, 2, "in_progress")), 2)

        self.assertEqual(result.progress, {"lastCompletedChapter": 2, "lastCompletedPage": 2, "status": "completed"})
        self.assertEqual(store.load("lamp")["progress"]["status"], "completed")
        self.assertEqual(sorted(result.content), ["1", "2"])
        self.assertEqual(sorted(result.content["2"]), ["1", "2"])
        self.assertEqual(pipeline.stage, PipelineStage.DONE)

    def test_artifacts_and_compiled_outputs_are_written(self):
        result = self._pipeline(FakeGenerationService()).run("a lighthouse", 2, 2, book_id="lamp")

        page = json.loads((self.root / "lamp" / "chapters" / "chapter2" / "page1.json").read_text(encoding="utf-8"))
        self.assertEqual(page["chapter"], 2)
        self.assertEqual(page["page"], 1)
        self.assertIn("timestamp", page)
        self.assertTrue((self.root / "lamp" / "chapters" / "chapter2" / "page1.docx").exists())
        self.assertTrue(result.compiled.docx_path.exists())
        self.assertEqual(result.compiled.toc, ["Chapter 1: The Lamp", "Chapter 2: The Storm"])

    def test_metadata_and_cover_are_recorded(self):
        service = FakeGenerationService()
        result = self._pipeline(service).run("a lighthouse", 1, 1, book_id="lamp", title="The Lamp")

        self.assertEqual(result.cover_image, COVER_URL)
        self.assertEqual(result.metadata["title"], "The Lamp")
        self.assertEqual(result.metadata["author"], "AI Writer")
        self.assertEqual(result.metadata["theme"], "a lighthouse")
        self.assertEqual(len(service.image_calls), 1)

    def test_failure_keeps_last_good_unit_and_resume_continues_there(self):
        store = RecordingStore(self.root)
        failing = FakeGenerationService(fail_on_pages={(2, 1)})
        pipeline = self._pipeline(failing, store)

        with self.assertRaises(GenerationServiceError):
            pipeline.run("a lighthouse", 2, 2, book_id="lamp")

        self.assertEqual(pipeline.stage, PipelineStage.FAILED)
        saved = store.load("lamp")
        self.assertEqual(saved["progress"], {"lastCompletedChapter": 1, "lastCompletedPage": 2, "status": "failed"})
        self.assertEqual(sorted(saved["content"]), ["1"])

        retry = FakeGenerationService()
        result = self._pipeline(retry, store).run("a lighthouse", 2, 2, book_id="lamp")

        self.assertEqual(retry.page_calls, [(2, 1), (2, 2)])
        self.assertEqual(retry.image_calls, [])
        self.assertFalse(any(u.startswith("Create a detailed book outline") for _, u, _ in retry.calls))
        self.assertEqual(result.content["1"], saved["content"]["1"])
        self.assertEqual(result.progress["status"], "completed")

    def test_resume_mid_chapter_does_not_regenerate_existing_pages(self):
        store = CheckpointStore(self.root)
        state = NarrativeState()
        state.outline = {"synopsis": "", "chapters": {}, "raw": "An outline"}
        state.metadata = {"title": "Lamp", "coverImage": COVER_URL}
        state.record_page(1, 1, "kept one")
        state.record_page(1, 2, "kept two")
        store.save("lamp", state.snapshot(state.candidate_progress(1, 2)))

        service = FakeGenerationService()
        result = self._pipeline(service, store).run("a lighthouse", 2, 3, book_id="lamp")

        self.assertEqual(service.page_calls, [(1, 3), (2, 1), (2, 2), (2, 3)])
        self.assertEqual(result.content["1"]["1"], "kept one")
        self.assertEqual(result.content["1"]["2"], "kept two")

    def test_cover_is_not_regenerated_when_already_set(self):
        store = CheckpointStore(self.root)
        state = NarrativeState()
        state.metadata = {"title": "Lamp", "coverImage": "https://existing/cover.png"}
        store.save("lamp", state.snapshot())

        service = FakeGenerationService()
        result = self._pipeline(service, store).run("a lighthouse", 1, 1, book_id="lamp")

        self.assertEqual(service.image_calls, [])
        self.assertEqual(result.cover_image, "https://existing/cover.png")

    def test_cancellation_checkpoints_and_propagates(self):
        store = RecordingStore(self.root)
        service = FakeGenerationService()

        def stop_at_second_page(chapter, page):
            if (chapter, page) == (1, 2):
                raise CancelledByCaller()

        with self.assertRaises(CancelledByCaller):
            self._pipeline(service, store, callback=stop_at_second_page).run("a lighthouse", 2, 2, book_id="lamp")

        self.assertEqual(service.page_calls, [(1, 1)])
        self.assertEqual(
            store.load("lamp")["progress"],
            {"lastCompletedChapter": 1, "lastCompletedPage": 1, "status": "in_progress"},
        )

    def test_checkpoint_write_failure_does_not_advance_progress(self):
        def fail_on_second_page(record):
            progress = record["progress"]
            return (progress["lastCompletedChapter"], progress["lastCompletedPage"]) == (1, 2)

        store = RecordingStore(self.root, fail_when=fail_on_second_page)
        service = FakeGenerationService(metadata_overrides={"Chapter 1, page 2.": GHOST_REPLY})

        with self.assertRaises(CheckpointError):
            self._pipeline(service, store).run("a lighthouse", 2, 2, book_id="lamp")

        saved = store.load("lamp")
        self.assertEqual(saved["progress"]["lastCompletedChapter"], 1)
        self.assertEqual(saved["progress"]["lastCompletedPage"], 1)
        self.assertEqual(saved["progress"]["status"], "failed")
        self.assertEqual(list(saved["content"]["1"]), ["1"])
        self.assertEqual([name for name, _ in saved["characters"]], ["Ada"])
        self.assertEqual(saved["plotPoints"], ["The lamp fails"])

    def test_characters_and_plot_points_accumulate(self):
        result = self._pipeline(FakeGenerationService()).run("a lighthouse", 2, 1, book_id="lamp")
        saved = CheckpointStore(self.root).load("lamp")

        self.assertEqual(saved["characters"][0][0], "Ada")
        self.assertEqual(saved["characters"][0][1]["appearances"], [1, 2])
        self.assertEqual(saved["characters"][0][1]["firstAppearanceChapter"], 1)
        self.assertEqual(saved["plotPoints"], ["The lamp fails"])
        self.assertEqual(result.progress["lastCompletedChapter"], 2)
