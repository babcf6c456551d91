from __future__ import annotations

import json
from unittest import TestCase

from bookweaver import agents
from bookweaver.errors import MalformedResponseError, UnsupportedLanguageError

from fakes import FakeGenerationService


class OutlineParsingTests(TestCase):
    def test_fenced_json_outline_is_structured(self):
        reply = "```json\n" + json.dumps(
            {
                "synopsis": "A storm.",
                "chapters": [
                    {"number": 1, "title": "Lamp", "summary": "Lit."},
                    {"title": "Storm", "summary": "Arrives."},
                ],
            }
        ) + "\n```"

        outline = agents.parse_outline(reply)

        self.assertEqual(outline["synopsis"], "A storm.")
        self.assertEqual(outline["chapters"]["1"], {"title": "Lamp", "summary": "Lit."})
        self.assertEqual(outline["chapters"]["2"]["title"], "Storm")
        self.assertEqual(outline["raw"], reply)

    def test_prose_outline_falls_back_to_raw(self):
        outline = agents.parse_outline("Chapter 1: the lamp is lit.")
        self.assertEqual(outline["chapters"], {})
        self.assertEqual(outline["raw"], "Chapter 1: the lamp is lit.")

    def test_create_outline_asks_for_requested_chapter_count(self):
        service = FakeGenerationService()
        outline = agents.create_outline(service, "a lighthouse", 3)

        _system, user, _params = service.calls[0]
        self.assertIn("3-chapter book about a lighthouse", user)
        self.assertEqual(len(outline["chapters"]), 3)


class MetadataParsingTests(TestCase):
    def test_valid_reply(self):
        parsed = agents.parse_metadata(
            '{"characters": [{"name": "Ada", "details": "keeper"}, "junk"], "plotPoints": ["x", 3]}'
        )
        self.assertEqual(parsed["characters"], [{"name": "Ada", "details": "keeper"}])
        self.assertEqual(parsed["plotPoints"], ["x"])

    def test_missing_fields_mean_no_metadata(self):
        self.assertEqual(agents.parse_metadata("{}"), {"characters": [], "plotPoints": []})

    def test_non_json_reply_is_malformed(self):
        with self.assertRaises(MalformedResponseError):
            agents.parse_metadata("Sure! Here are the characters: Ada.")

    def test_wrong_shape_is_malformed(self):
        with self.assertRaises(MalformedResponseError):
            agents.parse_metadata('{"characters": "Ada"}')


class TranslationTests(TestCase):
    def test_unsupported_language_is_rejected_before_any_call(self):
        service = FakeGenerationService()
        with self.assertRaises(UnsupportedLanguageError) as ctx:
            agents.translate_content(service, "Hello", "xx")
        self.assertEqual(str(ctx.exception), "Language xx not supported")
        self.assertEqual(service.calls, [])

    def test_translation_names_the_target_language(self):
        service = FakeGenerationService()
        self.assertEqual(agents.translate_content(service, "Hello", "de"), "[translated] Hello")
        self.assertIn("German", service.calls[0][0])


class PromptRenderingTests(TestCase):
    def test_page_prompt_carries_all_context(self):
        prompt = agents.render_page_prompt(
            chapter=2,
            page=3,
            previous_pages=["first page", "second page"],
            outline_excerpt="The Storm: it arrives",
            characters=[["Ada", {"description": "keeper"}]],
            plot_points={"The lamp fails"},
        )
        self.assertIn("You are writing page 3 of chapter 2.", prompt)
        self.assertIn("first page\n\nsecond page", prompt)
        self.assertIn("The Storm: it arrives", prompt)
        self.assertIn('"Ada"', prompt)
        self.assertIn("The lamp fails", prompt)

    def test_cover_prompt(self):
        self.assertEqual(
            agents.render_cover_prompt("a lighthouse"),
            "Create a professional book cover for: a lighthouse",
        )
