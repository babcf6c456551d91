"""
BookWeaver — Book Artifacts
===========================
Owns one book's output tree:

    books/<book_id>/
        chapters/chapter<c>/page<p>.json   {chapter, page, content, timestamp}
        chapters/chapter<c>/page<p>.docx
        compiled/complete.json | complete.docx
        metadata/book_state.json           (written by CheckpointStore)
        assets/cover.png
"""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path

import httpx

from bookweaver import config
from bookweaver.errors import GenerationServiceError
from bookweaver.exporter import render_page_docx

SUBDIRS = ("chapters", "compiled", "metadata", "assets")


class BookArtifacts:
    def __init__(
        self,
        book_id: str,
        root: Path | None = None,
        download_cover: bool = config.DOWNLOAD_COVER,
    ):
        self.book_id = book_id
        self.book_dir = config.book_dir(book_id, Path(root) if root else None)
        self.download_cover = download_cover

    def ensure_directories(self) -> None:
        for name in SUBDIRS:
            (self.book_dir / name).mkdir(parents=True, exist_ok=True)

    def chapter_dir(self, chapter: int) -> Path:
        return self.book_dir / "chapters" / f"chapter{chapter}"

    def compiled_path(self, filename: str) -> Path:
        return self.book_dir / "compiled" / filename

    def write_page(self, chapter: int, page: int, content: str, subtitle: str = "") -> Path:
        """Save the JSON record and the DOCX rendering of one generated page."""
        chapter_dir = self.chapter_dir(chapter)
        chapter_dir.mkdir(parents=True, exist_ok=True)

        json_path = chapter_dir / f"page{page}.json"
        json_path.write_text(
            json.dumps(
                {
                    "chapter": chapter,
                    "page": page,
                    "content": content,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
                indent=2,
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )
        (chapter_dir / f"page{page}.docx").write_bytes(
            render_page_docx(content, chapter, page, subtitle)
        )
        print(f"   📝 Saved chapter{chapter}/page{page}.json and .docx")
        return json_path

    def save_cover(self, image_url: str) -> str | None:
        """Download the cover image into assets/. Returns the local path."""
        if not self.download_cover:
            return None
        try:
            response = httpx.get(image_url, timeout=60, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise GenerationServiceError("cover download", str(e)) from e
        cover_path = self.book_dir / "assets" / "cover.png"
        cover_path.parent.mkdir(parents=True, exist_ok=True)
        cover_path.write_bytes(response.content)
        print(f"   🖼️  Cover saved → {cover_path}")
        return str(cover_path)

    def delete(self) -> bool:
        """Explicit deletion of everything generated for this book."""
        if not self.book_dir.exists():
            return False
        shutil.rmtree(self.book_dir)
        return True
