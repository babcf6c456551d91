"""
BookWeaver — FastAPI Backend Server
===================================
REST + SSE API around the book-writing pipelines. Lets clients:
  - Start a book (page-by-page or batch) as a background job
  - Stream real-time progress via SSE, or poll logs
  - Cancel a running job (progress is checkpointed)
  - Inspect, download or delete a book

Run with:
    uvicorn bookweaver_server.api:app --host 0.0.0.0 --port 8000 --reload

Endpoints:
    POST   /api/v1/books                     → Start a book job
    GET    /api/v1/jobs                      → All jobs
    GET    /api/v1/jobs/{job_id}             → Job status snapshot
    GET    /api/v1/jobs/{job_id}/logs        → Paginated logs
    GET    /api/v1/jobs/{job_id}/progress    → SSE stream of progress events
    POST   /api/v1/jobs/{job_id}/cancel      → Stop after the current unit
    GET    /api/v1/books/{book_id}           → Checkpoint progress
    GET    /api/v1/books/{book_id}/download  → Compiled DOCX
    DELETE /api/v1/books/{book_id}           → Delete checkpoint + artifacts
"""

from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from bookweaver import config
from bookweaver.artifacts import BookArtifacts
from bookweaver.batch import BatchPipeline, PollPolicy
from bookweaver.checkpoint import CheckpointStore
from bookweaver.compiler import COMPILED_DOCX
from bookweaver.errors import BookWeaverError, CancelledByCaller, CheckpointError, InvalidBookIdError
from bookweaver.llm import GenerationService
from bookweaver.pipeline import new_book_id
from bookweaver.sequential import SequentialPipeline
from bookweaver_server.jobs import Job, JobStore
from bookweaver_server.sse_manager import sse_manager

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Swappable for tests
job_store = JobStore()
BOOKS_ROOT: Optional[Path] = None
service_factory = GenerationService

app = FastAPI(
    title="BookWeaver API",
    description="AI book writing pipeline with checkpoint/resume",
    version="1.0.0",
)


# ──────────────────────────────────────────────
# STARTUP ACTIONS
# ──────────────────────────────────────────────
@app.on_event("startup")
async def startup_event():
    """On startup, mark any 'processing' jobs as failed/interrupted."""
    recovered = job_store.recover_interrupted()
    print(f"🚀 Server startup: recovered {recovered} interrupted job(s).")


# ──────────────────────────────────────────────
# CORS
# ──────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
)


class BookRequest(BaseModel):
    theme: str = Field(..., min_length=1)
    chapters: int = Field(config.DEFAULT_CHAPTERS, ge=1)
    pages_per_chapter: int = Field(config.DEFAULT_PAGES_PER_CHAPTER, ge=1)
    book_id: Optional[str] = None
    mode: Literal["sequential", "batch"] = "sequential"
    language: str = config.DEFAULT_LANGUAGE
    title: Optional[str] = None
    genre: Optional[str] = None


def _check_book_id(book_id: str) -> str:
    try:
        return config.validate_book_id(book_id)
    except InvalidBookIdError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _get_job_or_404(job_id: str) -> Job:
    job = job_store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


# ──────────────────────────────────────────────
# POST /api/v1/books — Start a Book Job
# ──────────────────────────────────────────────
@app.post("/api/v1/books")
async def create_book(request: BookRequest) -> JSONResponse:
    """
    Start (or resume, when ``book_id`` names an existing book) a writing job.
    Returns { job_id, book_id, status } immediately (202 Accepted).
    """
    if request.language not in config.SUPPORTED_LANGUAGES:
        raise HTTPException(status_code=400, detail=f"Language {request.language} not supported")
    if request.language != config.DEFAULT_LANGUAGE and request.mode != "batch":
        raise HTTPException(status_code=400, detail="Translation is only available in batch mode")

    book_id = _check_book_id(request.book_id) if request.book_id else new_book_id()
    if job_store.active_job_for_book(book_id):
        raise HTTPException(status_code=409, detail=f"Book {book_id} already has a running job")

    job = job_store.create(book_id=book_id, mode=request.mode, job_config=request.model_dump())
    _launch(job.job_id, asyncio.get_running_loop())

    return JSONResponse(
        status_code=202,
        content={"job_id": job.job_id, "book_id": book_id, "status": "processing"},
    )


def _launch(job_id: str, loop) -> threading.Thread:
    """Run the job in a background thread (non-blocking)."""
    job_store.update(job_id, status="processing")
    thread = threading.Thread(
        target=_run_job,
        args=(job_id, loop),
        daemon=True,
        name=f"book-{job_id}",
    )
    thread.start()
    return thread


# ──────────────────────────────────────────────
# JOB ENDPOINTS
# ──────────────────────────────────────────────
@app.get("/api/v1/jobs")
async def list_jobs() -> dict:
    return {"jobs": job_store.all_jobs()}


@app.get("/api/v1/jobs/{job_id}")
async def get_job(job_id: str) -> dict:
    return _job_progress_payload(_get_job_or_404(job_id))


@app.get("/api/v1/jobs/{job_id}/logs")
async def get_logs(job_id: str, cursor: int = 0, limit: int = 50) -> dict:
    """Paginated log lines. cursor = index of the last seen line."""
    job = _get_job_or_404(job_id)
    all_lines = job.log_lines
    new_lines = all_lines[cursor : cursor + limit]
    return {
        "job_id": job_id,
        "logs": new_lines,
        "next_cursor": str(cursor + len(new_lines)),
        "total": len(all_lines),
        "has_more": (cursor + len(new_lines)) < len(all_lines),
    }


@app.get("/api/v1/jobs/{job_id}/progress")
async def progress_stream(job_id: str, request: Request) -> EventSourceResponse:
    """Server-Sent Events stream of { progress_percentage, stage, status, message }."""
    job = _get_job_or_404(job_id)

    async def event_generator():
        # Send current state immediately on connect
        payload = _job_progress_payload(job)
        yield {"data": json.dumps(payload), "event": "message", "id": f"{job_id}-0"}
        if payload["status"] not in ("pending", "processing"):
            return

        async for event in sse_manager.subscribe(job_id):
            if await request.is_disconnected():
                break
            yield {
                "data": json.dumps(event),
                "event": "message",
                "id": f"{job_id}-{event.get('progress_percentage', 0)}",
            }

    return EventSourceResponse(event_generator())


@app.post("/api/v1/jobs/{job_id}/cancel")
async def cancel_job(job_id: str) -> JSONResponse:
    job = _get_job_or_404(job_id)
    if job.status not in ("pending", "processing"):
        raise HTTPException(status_code=409, detail=f"Job is not running (status: {job.status})")
    job_store.request_cancel(job_id)
    job_store.save()
    return JSONResponse(status_code=202, content={"job_id": job_id, "status": "cancelling"})


# ──────────────────────────────────────────────
# BOOK ENDPOINTS
# ──────────────────────────────────────────────
@app.get("/api/v1/books/{book_id}")
async def get_book(book_id: str) -> dict:
    _check_book_id(book_id)
    try:
        state = CheckpointStore(BOOKS_ROOT).load(book_id)
    except CheckpointError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    if state is None:
        raise HTTPException(status_code=404, detail=f"Book {book_id} not found")

    content = state.get("content") or {}
    return {
        "book_id": book_id,
        "progress": state.get("progress"),
        "metadata": state.get("metadata"),
        "chapters": len(content),
        "pages": sum(len(pages) for pages in content.values()),
        "characters": len(state.get("characters") or []),
        "plot_points": len(state.get("plotPoints") or []),
        "compiled": BookArtifacts(book_id, BOOKS_ROOT).compiled_path(COMPILED_DOCX).exists(),
    }


@app.get("/api/v1/books/{book_id}/download")
async def download_book(book_id: str) -> FileResponse:
    """Download the compiled DOCX of a finished book."""
    _check_book_id(book_id)
    docx_path = BookArtifacts(book_id, BOOKS_ROOT).compiled_path(COMPILED_DOCX)
    if not docx_path.exists():
        if not CheckpointStore(BOOKS_ROOT).exists(book_id):
            raise HTTPException(status_code=404, detail=f"Book {book_id} not found")
        raise HTTPException(status_code=409, detail="Book is not compiled yet")

    return FileResponse(
        path=str(docx_path),
        media_type=DOCX_MEDIA_TYPE,
        filename=f"BookWeaver_{book_id}.docx",
    )


@app.delete("/api/v1/books/{book_id}")
async def delete_book(book_id: str) -> dict:
    _check_book_id(book_id)
    if job_store.active_job_for_book(book_id):
        raise HTTPException(status_code=409, detail=f"Book {book_id} has a running job")
    if not BookArtifacts(book_id, BOOKS_ROOT).delete():
        raise HTTPException(status_code=404, detail=f"Book {book_id} not found")
    return {"book_id": book_id, "deleted": True}


# ──────────────────────────────────────────────
# BACKGROUND WRITER
# ──────────────────────────────────────────────
def _run_job(job_id: str, loop=None):
    """
    Runs one pipeline in a background thread.
    Publishes SSE events before every unit / batch poll.
    """
    job = job_store.get(job_id)
    request = job.config
    chapters = request["chapters"]
    pages = request["pages_per_chapter"] if job.mode == "sequential" else 1

    def emit(progress: float, stage: str, status: str, message: str, level: str = "INFO", **extra):
        updated = job_store.update(
            job_id,
            progress_percentage=progress,
            stage=stage,
            status=status,
            message=message,
            **extra,
        )
        job_store.append_log(job_id, message, level=level, source=stage)
        job_store.save()
        if updated:
            sse_manager.publish_threadsafe(job_id, _job_progress_payload(updated), loop)

    def check_cancel():
        if job_store.get(job_id).cancel_requested:
            raise CancelledByCaller("Job cancelled by user")

    def on_unit(chapter: int, page: int):
        check_cancel()
        done = (chapter - 1) * pages + (page - 1)
        emit(
            round(100.0 * done / (chapters * pages), 1),
            "generating",
            "processing",
            f"Writing chapter {chapter}/{chapters}, page {page}/{pages}",
            current_chapter=chapter,
            current_page=page,
        )

    def on_poll(status: str, elapsed: float):
        check_cancel()
        emit(10.0, "submitted", "processing", f"Batch job {status} ({elapsed:.0f}s)")

    service = service_factory()
    try:
        emit(0.0, "init", "processing", f"Starting book {job.book_id}")
        if job.mode == "batch":
            pipeline = BatchPipeline(service, root=BOOKS_ROOT, poll_policy=PollPolicy(on_poll=on_poll))
            result = pipeline.run(
                request["theme"],
                chapters,
                book_id=job.book_id,
                language=request.get("language", config.DEFAULT_LANGUAGE),
                title=request.get("title"),
                genre=request.get("genre"),
            )
        else:
            pipeline = SequentialPipeline(service, root=BOOKS_ROOT, progress_callback=on_unit)
            result = pipeline.run(
                request["theme"],
                chapters,
                pages,
                book_id=job.book_id,
                title=request.get("title"),
                genre=request.get("genre"),
            )
    except CancelledByCaller as e:
        emit(job_store.get(job_id).progress_percentage, "cancelled", "cancelled", str(e),
             level="WARN", is_recoverable=True)
        return
    except BookWeaverError as e:
        emit(job_store.get(job_id).progress_percentage, "failed", "failed", str(e)[:200],
             level="ERROR", is_recoverable=True)
        return
    except Exception as e:
        emit(job_store.get(job_id).progress_percentage, "failed", "failed",
             f"Unexpected error: {str(e)[:200]}", level="ERROR", is_recoverable=True)
        return

    docx_path = str(result.compiled.docx_path) if result.compiled else None
    emit(100.0, "done", "completed", "Book complete! DOCX ready to download.", docx_path=docx_path)


def _job_progress_payload(job: Job) -> dict:
    payload = {
        "job_id": job.job_id,
        "book_id": job.book_id,
        "mode": job.mode,
        "status": job.status,
        "stage": job.stage,
        "progress_percentage": job.progress_percentage,
        "current_chapter": job.current_chapter,
        "current_page": job.current_page,
        "message": job.message,
        "is_recoverable": job.is_recoverable,
    }

    if job.status == "failed":
        payload["error"] = {
            "code": (
                "SERVER_INTERRUPTED"
                if job.message == "Job interrupted by server restart. You can resume."
                else "JOB_FAILED"
            ),
            "message": job.message,
            "is_recoverable": job.is_recoverable,
        }

    return payload
