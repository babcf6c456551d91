"""
BookWeaver — Error Taxonomy
===========================
Every failure a pipeline run can surface to its caller.

    GenerationServiceError   outbound call to the text/image service failed
    CheckpointError          checkpoint unreadable (other than missing) or unwritable
    InvalidBookIdError       book id would not name a single directory under the books root
    CancelledByCaller        progress callback asked the run to stop
    UnsupportedLanguageError translation target outside SUPPORTED_LANGUAGES
    BatchJobError            bulk job reached a terminal failed status
    BatchTimeoutError        poll policy's max wait elapsed
    MalformedResponseError   structured reply could not be parsed (recovered locally)
"""

from __future__ import annotations


class BookWeaverError(Exception):
    """Base class for all pipeline errors."""


class GenerationServiceError(BookWeaverError):
    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class CheckpointError(BookWeaverError):
    def __init__(self, book_id: str, message: str):
        super().__init__(f"Checkpoint for '{book_id}': {message}")
        self.book_id = book_id


class CancelledByCaller(BookWeaverError):
    def __init__(self, message: str = "Writing stopped by user"):
        super().__init__(message)


class InvalidBookIdError(BookWeaverError):
    def __init__(self, book_id: str):
        super().__init__(f"Invalid book id: {book_id!r}")
        self.book_id = book_id


class UnsupportedLanguageError(BookWeaverError):
    def __init__(self, language: str):
        super().__init__(f"Language {language} not supported")
        self.language = language


class BatchJobError(BookWeaverError):
    def __init__(self, job_handle: str, message: str = "batch job failed"):
        super().__init__(f"Batch {job_handle}: {message}")
        self.job_handle = job_handle


class BatchTimeoutError(BatchJobError):
    def __init__(self, job_handle: str, waited: float):
        super().__init__(job_handle, f"not completed after {waited:.0f}s")
        self.waited = waited


class MalformedResponseError(BookWeaverError):
    """A structured (JSON) reply could not be parsed."""
