"""
BookWeaver — Book Exporter
==========================
Pure rendering functions: structured content in, ``.docx`` bytes or HTML text out.
Nothing here touches the filesystem or the generation service.

    render_page_docx(text, chapter, page, subtitle)   → one page document
    render_book_docx(chapters, metadata, titles)      → whole compiled book
    render_book_html(chapters, metadata, titles)      → whole compiled book as HTML
"""

from __future__ import annotations

import html
import io
from typing import Dict, List, Tuple

from docx import Document
from docx.enum.section import WD_SECTION
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Inches, Pt, RGBColor

HEADING_FONT = "Garamond"
BODY_FONT = "Georgia"
SCENE_BREAK = "* * *"
_SCENE_BREAK_MARKERS = {"***", "---", "* * *"}
_DIALOGUE_OPENERS = ('"', "“", "'")

ChapterPages = List[Tuple[int, List[Tuple[int, str]]]]


def is_dialogue(block: str) -> bool:
    return block.strip().startswith(_DIALOGUE_OPENERS)


def is_scene_break(block: str) -> bool:
    return block.strip() in _SCENE_BREAK_MARKERS


def split_blocks(text: str) -> List[str]:
    return [b.strip() for b in (text or "").split("\n\n") if b.strip()]


def _new_document() -> Document:
    document = Document()
    section = document.sections[0]
    section.page_width = Inches(8.5)
    section.page_height = Inches(11)
    for side in ("top_margin", "bottom_margin", "left_margin", "right_margin"):
        setattr(section, side, Inches(1))
    return document


def _to_bytes(document: Document) -> bytes:
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _add_centered(document: Document, text: str, size: int, bold: bool = True, color: str = "000000"):
    paragraph = document.add_paragraph()
    paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
    run = paragraph.add_run(text)
    run.bold = bold
    run.font.size = Pt(size)
    run.font.name = HEADING_FONT
    run.font.color.rgb = RGBColor.from_string(color)
    return paragraph


def _add_body(document: Document, text: str) -> None:
    """Body paragraphs with dialogue and scene-break styling."""
    for block in split_blocks(text):
        if is_scene_break(block):
            paragraph = document.add_paragraph()
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
            paragraph.paragraph_format.space_before = Pt(24)
            paragraph.paragraph_format.space_after = Pt(24)
            paragraph.add_run(SCENE_BREAK).font.name = BODY_FONT
            continue

        paragraph = document.add_paragraph()
        fmt = paragraph.paragraph_format
        fmt.line_spacing = 1.5
        fmt.space_before = Pt(6)
        fmt.space_after = Pt(6)
        run = paragraph.add_run(block)
        run.font.name = BODY_FONT
        run.font.size = Pt(12)
        if is_dialogue(block):
            run.italic = True
            fmt.left_indent = Inches(0.5)
            fmt.right_indent = Inches(0.5)
        else:
            fmt.first_line_indent = Inches(0.5)


def _set_running_text(paragraphs, text: str, alignment) -> None:
    paragraph = paragraphs[0]
    paragraph.text = ""
    paragraph.alignment = alignment
    run = paragraph.add_run(text)
    run.font.name = HEADING_FONT
    run.font.size = Pt(10)


def render_page_docx(text: str, chapter: int, page: int, subtitle: str = "") -> bytes:
    """Chapter title page, then the page body with running header/footer."""
    document = _new_document()
    _add_centered(document, f"Chapter {chapter}", 18)
    if subtitle:
        _add_centered(document, subtitle, 12, color="444444")

    body = document.add_section(WD_SECTION.NEW_PAGE)
    body.header.is_linked_to_previous = False
    body.footer.is_linked_to_previous = False
    _set_running_text(body.header.paragraphs, f"Chapter {chapter}", WD_ALIGN_PARAGRAPH.RIGHT)
    _set_running_text(body.footer.paragraphs, f"Page {page}", WD_ALIGN_PARAGRAPH.CENTER)

    _add_body(document, text)
    return _to_bytes(document)


def render_book_docx(
    chapters: ChapterPages,
    metadata: Dict[str, object] | None = None,
    titles: Dict[int, str] | None = None,
) -> bytes:
    """
    Title page, table of contents, then every chapter/page in
    chapter-then-page order.
    """
    metadata = metadata or {}
    titles = titles or {}
    document = _new_document()

    _add_centered(document, str(metadata.get("title") or "Untitled"), 28)
    if metadata.get("author"):
        _add_centered(document, str(metadata["author"]), 14, bold=False, color="444444")
    document.add_page_break()

    document.add_heading("Table of Contents", level=1)
    for chapter, _pages in chapters:
        document.add_paragraph(f"Chapter {chapter}: {titles.get(chapter, '')}".rstrip(": "))
    document.add_page_break()

    for index, (chapter, pages) in enumerate(chapters):
        heading = f"Chapter {chapter}"
        if titles.get(chapter):
            heading = f"{heading}: {titles[chapter]}"
        document.add_heading(heading, level=1)
        for page, text in pages:
            document.add_heading(f"Chapter {chapter}, Page {page}", level=2)
            _add_body(document, text)
        if index < len(chapters) - 1:
            document.add_page_break()

    return _to_bytes(document)


# ──────────────────────────────────────────────
# HTML
# ──────────────────────────────────────────────
HTML_TEMPLATE = """\
<!DOCTYPE html>
<html lang="{LANG}">
<head>
<meta charset="UTF-8">
<title>{TITLE}</title>
<style>
  body { max-width: 800px; margin: 0 auto; padding: 20px; font-family: Georgia, serif; }
  h1, h2 { color: #2c3e50; font-family: Garamond, serif; }
  p { line-height: 1.6; text-indent: 2em; }
  p.dialogue { font-style: italic; margin: 0 2em; text-indent: 0; }
  p.scene-break { text-align: center; text-indent: 0; }
  nav li { list-style: none; }
</style>
</head>
<body>
{BODY}
</body>
</html>
"""


def _html_blocks(text: str) -> List[str]:
    out = []
    for block in split_blocks(text):
        if is_scene_break(block):
            out.append(f'<p class="scene-break">{SCENE_BREAK}</p>')
        elif is_dialogue(block):
            out.append(f'<p class="dialogue">{html.escape(block)}</p>')
        else:
            out.append(f"<p>{html.escape(block)}</p>")
    return out


def render_book_html(
    chapters: ChapterPages,
    metadata: Dict[str, object] | None = None,
    titles: Dict[int, str] | None = None,
) -> str:
    """Same structure as the DOCX book, as one standalone HTML page."""
    metadata = metadata or {}
    titles = titles or {}
    title = html.escape(str(metadata.get("title") or "Untitled"))

    body = [f"<h1>{title}</h1>"]
    if metadata.get("author"):
        body.append(f'<p class="author">{html.escape(str(metadata["author"]))}</p>')

    body.append("<nav><h2>Table of Contents</h2><ul>")
    for chapter, _pages in chapters:
        label = f"Chapter {chapter}: {titles.get(chapter, '')}".rstrip(": ")
        body.append(f'<li><a href="#chapter-{chapter}">{html.escape(label)}</a></li>')
    body.append("</ul></nav>")

    for chapter, pages in chapters:
        heading = f"Chapter {chapter}"
        if titles.get(chapter):
            heading = f"{heading}: {titles[chapter]}"
        body.append(f'<section id="chapter-{chapter}"><h2>{html.escape(heading)}</h2>')
        for _page, text in pages:
            body.extend(_html_blocks(text))
        body.append("</section>")

    return (
        HTML_TEMPLATE.replace("{LANG}", html.escape(str(metadata.get("language") or "en")))
        .replace("{TITLE}", title)
        .replace("{BODY}", "\n".join(body))
    )
