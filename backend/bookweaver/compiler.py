"""
BookWeaver — Book Compiler
==========================
Assembles the finished content map into the two compiled outputs:

    compiled/complete.json   content map, numeric chapter/page order
    compiled/complete.docx   title page, table of contents, every page
    compiled/complete.html   the same book as a standalone web page
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from bookweaver.artifacts import BookArtifacts
from bookweaver.exporter import render_book_docx, render_book_html
from bookweaver.narrative import NarrativeState

COMPILED_JSON = "complete.json"
COMPILED_DOCX = "complete.docx"
COMPILED_HTML = "complete.html"


@dataclass
class CompiledBook:
    json_path: Path
    docx_path: Path
    html_path: Optional[Path] = None
    toc: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "json": str(self.json_path),
            "docx": str(self.docx_path),
            "html": str(self.html_path) if self.html_path else None,
            "toc": self.toc,
        }


class BookCompiler:
    def __init__(self, artifacts: BookArtifacts):
        self.artifacts = artifacts

    def table_of_contents(self, state: NarrativeState) -> List[str]:
        entries = []
        for chapter, _pages in state.ordered_content():
            title = state.chapter_title(chapter)
            entries.append(f"Chapter {chapter}: {title}" if title else f"Chapter {chapter}")
        return entries

    def compile(self, state: NarrativeState) -> CompiledBook:
        print("[Compiler] 📚 Compiling book...")
        ordered = state.ordered_content()

        json_path = self.artifacts.compiled_path(COMPILED_JSON)
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(
            json.dumps(
                {
                    "metadata": state.metadata,
                    "content": {
                        str(chapter): {str(page): text for page, text in pages}
                        for chapter, pages in ordered
                    },
                },
                indent=2,
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )

        titles = {chapter: state.chapter_title(chapter) for chapter, _ in ordered}
        docx_path = self.artifacts.compiled_path(COMPILED_DOCX)
        docx_path.write_bytes(render_book_docx(ordered, state.metadata, titles))
        html_path = self.artifacts.compiled_path(COMPILED_HTML)
        html_path.write_text(render_book_html(ordered, state.metadata, titles), encoding="utf-8")

        print(f"[Compiler] ✅ {len(ordered)} chapters → {docx_path}")
        return CompiledBook(
            json_path=json_path,
            docx_path=docx_path,
            html_path=html_path,
            toc=self.table_of_contents(state),
        )
