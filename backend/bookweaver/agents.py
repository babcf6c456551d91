"""
BookWeaver — Prompts & Agent Calls
==================================
Every prompt the pipelines send, plus the small single-call "agents"
built on top of them:

    create_outline     → structured outline (JSON, raw-text fallback)
    check_consistency  → advisory verdict against known characters/plot points
    edit_and_proofread → edited text
    translate_content  → text in a supported target language

Prompts use ``{PLACEHOLDER}`` markers filled with ``str.replace`` so that
literal JSON braces inside them need no escaping.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable

from bookweaver import config
from bookweaver.errors import MalformedResponseError, UnsupportedLanguageError
from bookweaver.state import ExtractedMetadata, empty_outline

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "ja": "Japanese",
    "zh": "Chinese",
}


# ──────────────────────────────────────────────
# SYSTEM PROMPT
# ──────────────────────────────────────────────
BOOK_SYSTEM_PROMPT = """\
You are an advanced AI book writer assistant specialized in creating long-form chapter books.
Your capabilities include:
- Creating detailed book outlines
- Writing complete chapters
- Maintaining consistency across the narrative
- Creating vivid story descriptions
- Working with existing manuscripts to continue the story

Please analyze any provided manuscript deeply before continuing the story."""


# ──────────────────────────────────────────────
# 1. OUTLINE
# ──────────────────────────────────────────────
OUTLINE_PROMPT = """\
Create a detailed book outline for a {CHAPTERS}-chapter book about {THEME}.
Include chapter summaries and key plot points.

Respond ONLY with valid JSON using this structure:
{
  "synopsis": "two or three sentences describing the whole book",
  "chapters": [
    {"number": 1, "title": "chapter title", "summary": "what happens, key plot points"}
  ]
}"""


def strip_json_fence(content: str) -> str:
    """Remove a surrounding Markdown code fence from a model reply."""
    content = (content or "").strip()
    if content.startswith("```json"):
        content = content[7:]
    if content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def parse_outline(text: str) -> Dict[str, Any]:
    """
    Normalise an outline reply to
    ``{"synopsis", "chapters": {"<n>": {"title", "summary"}}, "raw"}``.

    A reply that is not the expected JSON is kept verbatim under ``raw``.
    """
    outline = {**empty_outline(), "raw": text or ""}
    try:
        data = json.loads(strip_json_fence(text))
    except json.JSONDecodeError:
        print("[Outline] ⚠️ Outline is not JSON, keeping raw text")
        return outline
    if not isinstance(data, dict):
        return outline

    outline["synopsis"] = str(data.get("synopsis", "") or "")
    for index, entry in enumerate(data.get("chapters") or [], start=1):
        if not isinstance(entry, dict):
            continue
        try:
            number = int(entry.get("number", index))
        except (TypeError, ValueError):
            number = index
        outline["chapters"][str(number)] = {
            "title": str(entry.get("title", "") or ""),
            "summary": str(entry.get("summary", "") or ""),
        }
    return outline


def create_outline(service, theme: str, chapters: int) -> Dict[str, Any]:
    prompt = OUTLINE_PROMPT.replace("{CHAPTERS}", str(chapters)).replace("{THEME}", theme)
    print(f"[Outline] Requesting outline for {chapters} chapters...")
    text = service.complete(BOOK_SYSTEM_PROMPT, prompt, temperature=config.TEMPERATURE)
    outline = parse_outline(text)
    print(f"[Outline] ✅ Outline ready ({len(outline['chapters'])} structured chapters)")
    return outline


# ──────────────────────────────────────────────
# 2. PAGE
# ──────────────────────────────────────────────
PAGE_PROMPT = """\
You are writing page {PAGE} of chapter {CHAPTER}.

Context from previous pages:
{PREVIOUS_PAGES}

Current outline for this chapter:
{OUTLINE}

Known characters:
{CHARACTERS}

Important plot points:
{PLOT_POINTS}

Write the next page maintaining consistency with the story.
Each page should be approximately 500 words.
End the page at a natural break point.

Format the response as a single page of prose."""


def render_page_prompt(
    chapter: int,
    page: int,
    previous_pages: Iterable[str],
    outline_excerpt: str,
    characters: list,
    plot_points: Iterable[str],
) -> str:
    previous = "\n\n".join(previous_pages) or "None - this is the first page of the chapter."
    return (
        PAGE_PROMPT.replace("{PAGE}", str(page))
        .replace("{CHAPTER}", str(chapter))
        .replace("{PREVIOUS_PAGES}", previous)
        .replace("{OUTLINE}", outline_excerpt)
        .replace("{CHARACTERS}", json.dumps(characters, ensure_ascii=False))
        .replace("{PLOT_POINTS}", json.dumps(sorted(plot_points), ensure_ascii=False))
    )


# ──────────────────────────────────────────────
# 3. METADATA EXTRACTION
# ──────────────────────────────────────────────
METADATA_SYSTEM_PROMPT = "You are a metadata extractor. Always respond with valid JSON."

METADATA_PROMPT = """\
Analyze this text and extract:
1. Any new characters introduced
2. Important plot points
3. Key story developments

Format the response as valid JSON with this structure:
{
  "characters": [
    {"name": "character name", "details": "character description"}
  ],
  "plotPoints": ["plot point 1", "plot point 2"],
  "storyDevelopments": ["development 1", "development 2"]
}

Text to analyze: {CONTENT}"""


def parse_metadata(text: str) -> ExtractedMetadata:
    """Parse a metadata reply. Raises ``MalformedResponseError`` when unusable."""
    try:
        data = json.loads(strip_json_fence(text))
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedResponseError(f"metadata reply is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError("metadata reply is not a JSON object")

    characters = data.get("characters") or []
    plot_points = data.get("plotPoints") or []
    if not isinstance(characters, list) or not isinstance(plot_points, list):
        raise MalformedResponseError("metadata fields have the wrong shape")
    return {
        "characters": [c for c in characters if isinstance(c, dict)],
        "plotPoints": [p for p in plot_points if isinstance(p, str)],
    }


# ──────────────────────────────────────────────
# 4. CONSISTENCY CHECK
# ──────────────────────────────────────────────
CONSISTENCY_SYSTEM_PROMPT = "Analyze the text for character and plot consistency."

CONSISTENCY_PROMPT = """\
Check this content against known characters and plot points:
Characters: {CHARACTERS}
Plot Points: {PLOT_POINTS}
Content: {CONTENT}"""


def check_consistency(service, content: str, characters: list, plot_points: Iterable[str]) -> str:
    """Advisory only: the verdict is reported, never acted upon."""
    prompt = (
        CONSISTENCY_PROMPT.replace("{CHARACTERS}", json.dumps(characters, ensure_ascii=False))
        .replace("{PLOT_POINTS}", json.dumps(sorted(plot_points), ensure_ascii=False))
        .replace("{CONTENT}", content)
    )
    return service.complete(CONSISTENCY_SYSTEM_PROMPT, prompt)


# ──────────────────────────────────────────────
# 5. EDITOR
# ──────────────────────────────────────────────
EDITOR_SYSTEM_PROMPT = (
    "You are an expert editor and proofreader. Fix grammar, spelling, and "
    "style issues while maintaining the original voice."
)


def edit_and_proofread(service, content: str) -> str:
    return service.complete(EDITOR_SYSTEM_PROMPT, content)


# ──────────────────────────────────────────────
# 6. TRANSLATION
# ──────────────────────────────────────────────
TRANSLATION_SYSTEM_PROMPT = (
    "Translate the following text to {LANGUAGE}, maintaining the style and tone:"
)


def validate_language(language: str) -> str:
    if language not in config.SUPPORTED_LANGUAGES:
        raise UnsupportedLanguageError(language)
    return language


def translate_content(service, content: str, language: str) -> str:
    validate_language(language)
    system_prompt = TRANSLATION_SYSTEM_PROMPT.replace("{LANGUAGE}", LANGUAGE_NAMES[language])
    return service.complete(system_prompt, content)


# ──────────────────────────────────────────────
# 7. COVER & BATCH CHAPTER
# ──────────────────────────────────────────────
COVER_PROMPT = "Create a professional book cover for: {THEME}"

BATCH_CHAPTER_PROMPT = """\
Write Chapter {CHAPTER} for a book about {THEME}.
Use the following outline: {OUTLINE}
Previous chapters context: {CONTENT}"""


def render_cover_prompt(theme: str) -> str:
    return COVER_PROMPT.replace("{THEME}", theme)


def render_batch_chapter_prompt(chapter: int, theme: str, outline: Dict[str, Any], content: Dict[str, Any]) -> str:
    return (
        BATCH_CHAPTER_PROMPT.replace("{CHAPTER}", str(chapter))
        .replace("{THEME}", theme)
        .replace("{OUTLINE}", json.dumps(outline, ensure_ascii=False))
        .replace("{CONTENT}", json.dumps(content, ensure_ascii=False))
    )
