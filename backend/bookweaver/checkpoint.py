"""
BookWeaver — Checkpoint Store (Fault Tolerance)
===============================================
Durable JSON persistence for one book's generation state:

    data/output/books/<book_id>/metadata/book_state.json

A missing file means "no existing state". Any other read failure
(corrupt JSON, permissions) is fatal for the caller. Every write fully
replaces the previous checkpoint; merging happens in memory beforehand.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from bookweaver import config
from bookweaver.errors import CheckpointError
from bookweaver.state import BookState


class CheckpointStore:
    """One JSON document per book identifier."""

    def __init__(self, root: Path | None = None):
        self.root = Path(root) if root else config.BOOKS_DIR

    def path_for(self, book_id: str) -> Path:
        return config.book_dir(book_id, self.root) / "metadata" / config.STATE_FILENAME

    def exists(self, book_id: str) -> bool:
        return self.path_for(book_id).exists()

    def load(self, book_id: str) -> Optional[BookState]:
        """Load the last checkpoint, or ``None`` if the book has none."""
        path = self.path_for(book_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CheckpointError(book_id, f"could not read {path}: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CheckpointError(book_id, f"corrupt checkpoint {path.name}: {e}") from e
        if not isinstance(data, dict):
            raise CheckpointError(book_id, "checkpoint is not a JSON object")
        return data

    def save(self, book_id: str, state: BookState) -> None:
        """Replace the checkpoint. Raises ``CheckpointError`` if durability can't be confirmed."""
        path = self.path_for(book_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(state, indent=2, ensure_ascii=False), encoding="utf-8"
            )
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            tmp_path.unlink(missing_ok=True)
            raise CheckpointError(book_id, f"could not write {path}: {e}") from e

        progress = state.get("progress", {})
        print(
            f"   💾 Checkpoint saved: chapter {progress.get('lastCompletedChapter', 0)}, "
            f"page {progress.get('lastCompletedPage', 0)} ({progress.get('status', '?')})"
        )

    def delete(self, book_id: str) -> bool:
        """Explicitly delete a book's checkpoint. Never called by the pipelines."""
        path = self.path_for(book_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_books(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            d.name
            for d in self.root.iterdir()
            if d.is_dir() and (d / "metadata" / config.STATE_FILENAME).exists()
        )

