from __future__ import annotations

from unittest import TestCase

from bookweaver.narrative import Character, NarrativeState


class CharacterMergeTests(TestCase):
    def test_new_character_records_first_appearance(self):
        state = NarrativeState()
        state.merge_extracted_metadata([{"name": "Ada", "details": "keeper"}], [], chapter=3)

        ada = state.characters["Ada"]
        self.assertEqual(ada.description, "keeper")
        self.assertEqual(ada.first_appearance_chapter, 3)
        self.assertEqual(ada.appearances, {3})

    def test_known_character_gains_appearance_and_keeps_description(self):
        state = NarrativeState()
        state.merge_extracted_metadata([{"name": "Ada", "details": "keeper"}], [], chapter=1)
        state.merge_extracted_metadata([{"name": "Ada", "details": "a villain now"}], [], chapter=2)
        state.merge_extracted_metadata([{"name": "Ada", "details": "other"}], [], chapter=1)

        ada = state.characters["Ada"]
        self.assertEqual(ada.description, "keeper")
        self.assertEqual(ada.first_appearance_chapter, 1)
        self.assertEqual(ada.appearances, {1, 2})

    def test_entries_without_usable_name_are_ignored(self):
        state = NarrativeState()
        state.merge_extracted_metadata([{"details": "nameless"}, "Ada", {"name": "  "}], [], chapter=1)
        self.assertEqual(state.characters, {})

    def test_structured_details_are_stored_as_json_text(self):
        state = NarrativeState()
        state.merge_extracted_metadata([{"name": "Bo", "details": {"age": 9}}], [], chapter=1)
        self.assertEqual(state.characters["Bo"].description, '{"age": 9}')


class PlotPointTests(TestCase):
    def test_same_plot_point_is_stored_once(self):
        state = NarrativeState()
        state.merge_extracted_metadata([], ["The lamp fails"], chapter=1)
        state.merge_extracted_metadata([], ["The lamp fails"], chapter=2)
        self.assertEqual(state.plot_points, {"The lamp fails"})

    def test_plot_points_are_case_sensitive_and_never_shrink(self):
        state = NarrativeState()
        state.merge_extracted_metadata([], ["The lamp fails", "the lamp fails"], chapter=1)
        state.merge_extracted_metadata([], [], chapter=2)
        self.assertEqual(len(state.plot_points), 2)


class ResumePointTests(TestCase):
    def _state(self, chapter, page):
        state = NarrativeState()
        state.commit_progress(state.candidate_progress(chapter, page))
        return state

    def test_fresh_book_starts_at_first_page(self):
        self.assertEqual(NarrativeState().resume_point(5), (1, 1))

    def test_mid_chapter_resumes_at_next_page(self):
        self.assertEqual(self._state(2, 3).resume_point(5), (2, 4))

    def test_finished_chapter_resumes_at_next_chapter(self):
        self.assertEqual(self._state(2, 5).resume_point(5), (3, 1))


class SnapshotTests(TestCase):
    def test_snapshot_round_trips_through_merge_checkpoint(self):
        state = NarrativeState()
        state.record_page(2, 1, "two-one")
        state.record_page(1, 2, "one-two")
        state.record_page(1, 1, "one-one")
        state.merge_extracted_metadata([{"name": "Ada", "details": "keeper"}], ["p"], chapter=1)
        state.metadata = {"title": "Lamp"}

        record = state.snapshot(state.candidate_progress(2, 1))
        self.assertEqual(list(record["content"]), ["1", "2"])
        self.assertEqual(list(record["content"]["1"]), ["1", "2"])
        self.assertEqual(record["characters"][0][0], "Ada")
        self.assertEqual(state.progress["lastCompletedChapter"], 0)

        restored = NarrativeState.from_checkpoint(record)
        self.assertEqual(restored.content, {1: {1: "one-one", 2: "one-two"}, 2: {1: "two-one"}})
        self.assertEqual(restored.progress["lastCompletedChapter"], 2)
        self.assertEqual(restored.characters["Ada"].appearances, {1})
        self.assertEqual(restored.plot_points, {"p"})

    def test_plain_text_outline_is_kept_as_raw(self):
        state = NarrativeState.from_checkpoint({"outline": "Chapter 1: the lamp"})
        self.assertEqual(state.outline["raw"], "Chapter 1: the lamp")
        self.assertEqual(state.outline_excerpt(1), "Chapter 1: the lamp")

    def test_discard_page_removes_empty_chapter(self):
        state = NarrativeState()
        state.record_page(1, 1, "text")
        state.discard_page(1, 1)
        self.assertEqual(state.content, {})


class OutlineTests(TestCase):
    def test_structured_excerpt_and_title(self):
        state = NarrativeState()
        state.outline = {
            "synopsis": "",
            "chapters": {"1": {"title": "The Lamp", "summary": "Ada lights it."}},
            "raw": "{}",
        }
        self.assertEqual(state.outline_excerpt(1), "The Lamp: Ada lights it.")
        self.assertEqual(state.chapter_title(1), "The Lamp")
        self.assertEqual(state.chapter_title(2), "")

    def test_missing_outline_has_placeholder_excerpt(self):
        state = NarrativeState()
        self.assertFalse(state.has_outline())
        self.assertEqual(state.outline_excerpt(4), "No outline available")

    def test_character_record_defaults_appearances_to_first_chapter(self):
        character = Character.from_record({"description": "d", "firstAppearanceChapter": 2})
        self.assertEqual(character.appearances, {2})
