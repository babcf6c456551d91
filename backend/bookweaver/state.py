"""
BookWeaver — State Definitions
==============================
TypedDicts for the on-disk checkpoint record and for the per-chapter
post-processing graph used by the batch pipeline:

    consistency → edit → extract
"""

from __future__ import annotations

from typing import Any, Dict, List, TypedDict

STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

PROGRESS_STATUSES = (
    STATUS_NOT_STARTED,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_FAILED,
)


class ProgressState(TypedDict):
    lastCompletedChapter: int
    lastCompletedPage: int
    status: str


class CharacterRecord(TypedDict):
    description: str
    firstAppearanceChapter: int
    appearances: List[int]


class BookState(TypedDict, total=False):
    """
    The checkpoint record for one book, exactly as written to disk.

    Attributes
    ----------
    progress : ProgressState
        Cursor of the last unit whose content was durably persisted.

    characters : list
        Ordered ``[name, CharacterRecord]`` pairs.

    plotPoints : list[str]
        De-duplicated plot point strings.

    content : dict
        ``{"<chapter>": {"<page>": text}}``.

    outline : dict
        ``{"synopsis", "chapters": {"<n>": {"title", "summary"}}, "raw"}``.

    metadata : dict
        Title, author, genre, cover reference, ...
    """

    progress: ProgressState
    characters: List[List[Any]]
    plotPoints: List[str]
    content: Dict[str, Dict[str, str]]
    outline: Dict[str, Any]
    metadata: Dict[str, Any]


class ExtractedMetadata(TypedDict):
    characters: List[Dict[str, str]]
    plotPoints: List[str]


class ChapterReviewState(TypedDict, total=False):
    """
    Shared state for the batch post-processing graph (per-chapter).

    Attributes
    ----------
    chapter : int
        Chapter number of the batch result being merged.

    draft : str
        Raw chapter text returned by the batch job.

    consistency_report : str
        Advisory verdict from the consistency check; never blocks merging.

    edited : str
        Proofread chapter text; always replaces the draft.

    extracted : ExtractedMetadata
        Characters / plot points found in the edited text.
    """

    chapter: int
    draft: str
    consistency_report: str
    edited: str
    extracted: ExtractedMetadata


def empty_progress() -> ProgressState:
    return {
        "lastCompletedChapter": 0,
        "lastCompletedPage": 0,
        "status": STATUS_NOT_STARTED,
    }


def empty_outline() -> Dict[str, Any]:
    return {"synopsis": "", "chapters": {}, "raw": ""}
