import mimetypes
from threading import Lock
from typing import Optional

from fastapi import UploadFile

from pipeline.file_processor import FileProcessor, SourceFile, TranscriptionResult


class ProcessBusyError(Exception):
    pass


class ProcessInputError(Exception):
    pass


class ProcessManager:
    """Runs one file through the pipeline at a time so the provider rate limit is shared."""

    def __init__(self, processor: FileProcessor, max_upload_bytes: int):
        self.processor = processor
        self.max_upload_bytes = max_upload_bytes
        self._lock = Lock()

    def process_upload(self, file: UploadFile, language: Optional[str] = None) -> TranscriptionResult:
        if not file.filename:
            raise ProcessInputError("Uploaded file must have a filename")

        data = file.file.read(self.max_upload_bytes + 1)
        if not data:
            raise ProcessInputError("Uploaded file is empty")
        if len(data) > self.max_upload_bytes:
            raise ProcessInputError(f"Uploaded file exceeds {self.max_upload_bytes} bytes")

        mime_type = file.content_type
        if not mime_type or mime_type == "application/octet-stream":
            mime_type = mimetypes.guess_type(file.filename)[0] or mime_type

        source = SourceFile(name=file.filename, data=data, mime_type=mime_type)
        return self._run(lambda: self.processor.process_file(source, language=language))

    def process_reel(self, url: str, language: Optional[str] = None) -> TranscriptionResult:
        return self._run(lambda: self.processor.process_reel(url, language=language))

    def _run(self, job) -> TranscriptionResult:
        if not self._lock.acquire(blocking=False):
            raise ProcessBusyError("Another file is being transcribed. Try again when it finishes.")
        try:
            return job()
        finally:
            self._lock.release()
