"""
BookWeaver — Generation Unit Executor
=====================================
Turns one (chapter, page) coordinate into page text:

    build_context → complete(page prompt) → complete(metadata prompt)

The executor persists nothing and never retries. A failed service call
propagates to the controller; only an unparseable metadata reply is
recovered here (as "no new metadata").
"""

from __future__ import annotations

from dataclasses import dataclass, field

from bookweaver import agents, config
from bookweaver.errors import MalformedResponseError
from bookweaver.narrative import NarrativeState
from bookweaver.state import ExtractedMetadata


def empty_metadata() -> ExtractedMetadata:
    return {"characters": [], "plotPoints": []}


@dataclass
class GenerationUnit:
    chapter: int
    page: int
    prompt_context: str = ""


@dataclass
class UnitResult:
    unit: GenerationUnit
    content: str
    metadata: ExtractedMetadata = field(default_factory=empty_metadata)


class PageExecutor:
    def __init__(self, service, max_tokens: int = config.PAGE_MAX_TOKENS, temperature: float = config.TEMPERATURE):
        self.service = service
        self.max_tokens = max_tokens
        self.temperature = temperature

    def build_unit(self, chapter: int, page: int, state: NarrativeState) -> GenerationUnit:
        """Outline excerpt, earlier pages of this chapter, characters and plot points."""
        context = agents.render_page_prompt(
            chapter=chapter,
            page=page,
            previous_pages=state.previous_pages(chapter, page),
            outline_excerpt=state.outline_excerpt(chapter),
            characters=state.characters_table(),
            plot_points=state.plot_points,
        )
        return GenerationUnit(chapter=chapter, page=page, prompt_context=context)

    def generate(self, unit: GenerationUnit) -> str:
        return self.service.complete(
            agents.BOOK_SYSTEM_PROMPT,
            unit.prompt_context,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

    def extract_metadata(self, content: str) -> ExtractedMetadata:
        reply = self.service.complete(
            agents.METADATA_SYSTEM_PROMPT,
            agents.METADATA_PROMPT.replace("{CONTENT}", content),
            response_format={"type": "json_object"},
        )
        try:
            return agents.parse_metadata(reply)
        except MalformedResponseError as e:
            print(f"[Executor] ⚠️ {e} - continuing with no new metadata")
            return empty_metadata()

    def run(self, chapter: int, page: int, state: NarrativeState) -> UnitResult:
        unit = self.build_unit(chapter, page, state)
        content = self.generate(unit)
        metadata = self.extract_metadata(content)
        return UnitResult(unit=unit, content=content, metadata=metadata)
