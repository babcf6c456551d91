"""
BookWeaver — Command-Line Writer
================================
Writes a whole book from a theme, page by page (default) or one chapter
per task through the provider's batch API:

    python main.py "a lighthouse keeper who hears the sea" --chapters 12 --pages 5
    python main.py "..." --book-id lighthouse                 # Resume an existing book
    python main.py "..." --batch --language fr                # Batch mode + translation
    python main.py --book-id lighthouse --status              # Show checkpoint progress
    python main.py --book-id lighthouse --delete              # Delete a book

While a page-by-page run is active, type ``pause``, ``resume``, ``stop``
or ``status`` and press Enter.

Exit codes: 0 success, 130 stopped by user, 1 failure.
"""

from __future__ import annotations

import argparse
import sys
import threading
import time

from dotenv import load_dotenv

from bookweaver import config
from bookweaver.artifacts import BookArtifacts
from bookweaver.batch import BatchPipeline, PollPolicy
from bookweaver.checkpoint import CheckpointStore
from bookweaver.errors import BookWeaverError, CancelledByCaller, InvalidBookIdError
from bookweaver.llm import GenerationService
from bookweaver.pipeline import new_book_id
from bookweaver.sequential import SequentialPipeline
from bookweaver.session import COMMANDS, WriterSession

load_dotenv()

# Fix Windows console encoding (cp1252 can't handle Unicode box chars)
if sys.stdout.encoding != "utf-8":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
if sys.stderr.encoding != "utf-8":
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


# ──────────────────────────────────────────────
# CONSOLE CONTROLS
# ──────────────────────────────────────────────
def _listen_for_commands(session: WriterSession, stream=None) -> threading.Thread:
    stream = stream or sys.stdin

    def _reader():
        for line in stream:
            if line.strip() and not session.handle_command(line):
                print(f"Commands: {', '.join(COMMANDS)}")
            if session.stopped:
                return

    thread = threading.Thread(target=_reader, daemon=True)
    thread.start()
    return thread


def show_status(book_id: str) -> int:
    state = CheckpointStore().load(book_id)
    if state is None:
        print(f"❌ No checkpoint for book '{book_id}'")
        return EXIT_FAILED
    progress = state.get("progress", {})
    metadata = state.get("metadata", {})
    pages = sum(len(p) for p in (state.get("content") or {}).values())
    print(f"📖 {metadata.get('title', book_id)} ({book_id})")
    print(f"   Status:   {progress.get('status')}")
    print(f"   Last:     chapter {progress.get('lastCompletedChapter')}, page {progress.get('lastCompletedPage')}")
    print(f"   Pages:    {pages}")
    print(f"   Characters: {len(state.get('characters') or [])}, plot points: {len(state.get('plotPoints') or [])}")
    return EXIT_OK


def delete_book(book_id: str) -> int:
    if BookArtifacts(book_id).delete():
        print(f"🗑️  Deleted book '{book_id}'")
        return EXIT_OK
    print(f"❌ No book named '{book_id}'")
    return EXIT_FAILED


# ──────────────────────────────────────────────
# MAIN
# ──────────────────────────────────────────────
def main(
    theme: str,
    chapters: int = config.DEFAULT_CHAPTERS,
    pages: int = config.DEFAULT_PAGES_PER_CHAPTER,
    book_id: str | None = None,
    batch: bool = False,
    language: str = config.DEFAULT_LANGUAGE,
    title: str | None = None,
    genre: str | None = None,
) -> int:
    """Write one book. Returns the process exit code."""
    start_time = time.time()
    book_id = book_id or new_book_id()

    print()
    print("╔══════════════════════════════════════════════════════════╗")
    print("║              📖  BookWeaver — AI BOOK WRITER              ║")
    print("╚══════════════════════════════════════════════════════════╝")
    print(f"   Book:     {book_id}")
    print(f"   Theme:    {theme}")
    print(f"   Mode:     {'batch' if batch else 'page by page'} ({chapters} chapters)")
    print()

    service = GenerationService()
    session = WriterSession()

    try:
        if batch:
            pipeline = BatchPipeline(service, poll_policy=PollPolicy(on_poll=session.poll_callback))
            result = pipeline.run(
                theme, chapters, book_id=book_id, language=language, title=title, genre=genre
            )
        else:
            print(f"Commands: {', '.join(COMMANDS)}")
            _listen_for_commands(session)
            pipeline = SequentialPipeline(service, progress_callback=session.progress_callback)
            result = pipeline.run(theme, chapters, pages, book_id=book_id, title=title, genre=genre)
    except CancelledByCaller:
        print("\nBook creation stopped. Progress has been saved.")
        return EXIT_CANCELLED
    except BookWeaverError as e:
        print(f"\n❌ {e}")
        print(f"   Re-run with --book-id {book_id} to resume from the last checkpoint.")
        return EXIT_FAILED

    elapsed = time.time() - start_time
    print()
    print("╔══════════════════════════════════════════════════════════╗")
    print(f"║  ✅  BOOK COMPLETE in {elapsed / 60:6.1f} min".ljust(59) + "║")
    print("╚══════════════════════════════════════════════════════════╝")
    if result.compiled:
        print(f"   📄 {result.compiled.docx_path}")
        print(f"   🌐 {result.compiled.html_path}")
        print(f"   🗂️  {result.compiled.json_path}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="BookWeaver AI book writer")
    parser.add_argument("theme", help="What the book is about", nargs="?")
    parser.add_argument("--chapters", type=int, default=config.DEFAULT_CHAPTERS)
    parser.add_argument("--pages", type=int, default=config.DEFAULT_PAGES_PER_CHAPTER,
                        help="Pages per chapter (page-by-page mode)")
    parser.add_argument("--book-id", default=None, help="Book identifier; reuse it to resume")
    parser.add_argument("--batch", action="store_true", help="Generate chapters as one batch job")
    parser.add_argument("--language", default=config.DEFAULT_LANGUAGE,
                        help=f"Translate the finished book (batch mode): {', '.join(config.SUPPORTED_LANGUAGES)}")
    parser.add_argument("--title", default=None)
    parser.add_argument("--genre", default=None)
    parser.add_argument("--status", action="store_true", help="Show checkpoint progress and exit")
    parser.add_argument("--delete", action="store_true", help="Delete the book and exit")
    return parser


def cli(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.book_id is not None:
        try:
            config.validate_book_id(args.book_id)
        except InvalidBookIdError as e:
            print(f"❌ {e} (use letters, digits, '-' and '_')")
            return EXIT_FAILED

    if args.status or args.delete:
        if not args.book_id:
            print("❌ --book-id is required with --status / --delete")
            return EXIT_FAILED
        return show_status(args.book_id) if args.status else delete_book(args.book_id)

    if not args.theme:
        print("❌ A theme is required to write a book.")
        return EXIT_FAILED
    if args.chapters < 1 or args.pages < 1:
        print("❌ --chapters and --pages must be at least 1")
        return EXIT_FAILED
    if args.language != config.DEFAULT_LANGUAGE and not args.batch:
        print(f"❌ --language {args.language}: translation is only available with --batch")
        return EXIT_FAILED

    return main(
        args.theme,
        chapters=args.chapters,
        pages=args.pages,
        book_id=args.book_id,
        batch=args.batch,
        language=args.language,
        title=args.title,
        genre=args.genre,
    )


# ──────────────────────────────────────────────
# CLI ENTRY POINT
# ──────────────────────────────────────────────
if __name__ == "__main__":
    sys.exit(cli())
