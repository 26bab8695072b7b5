"""Upload sessions: persisting request files on disk and resolving them later."""
from __future__ import annotations

import logging
import re
import shutil
import threading
import time
import uuid
from pathlib import Path
from typing import BinaryIO, Final, Iterable, List, Optional, Protocol, Tuple

from pdfask.errors import MissingInputError
from pdfask.models import Document, SessionResolution
from pdfask.telemetry import emit_upload_event

LOGGER = logging.getLogger(__name__)

STAGING_DIR_NAME: Final[str] = ".incoming"
_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")
_STORAGE_PREFIX_RE: Final[re.Pattern[str]] = re.compile(r"^(\d+)(?:-(\d+))?_")
_SESSION_ID_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]+$")


class IncomingUpload(Protocol):
    """Anything shaped like an uploaded file part (e.g. ``fastapi.UploadFile``)."""

    filename: Optional[str]
    file: BinaryIO


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""
    if not filename:
        return "upload.pdf"
    # Remove any path components and replace disallowed characters.
    sanitized = Path(filename.replace("\\", "/")).name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    sanitized = sanitized.strip("._")
    return sanitized or "upload.pdf"


def display_name_from_storage(storage_name: str) -> str:
    """Best-effort recovery of the original name from a prefixed storage name.

    Lossy when the original name itself started with ``<digits>_``.
    """

    return _STORAGE_PREFIX_RE.sub("", storage_name, count=1) or storage_name


def _storage_sort_key(path: Path) -> Tuple[int, int, str]:
    match = _STORAGE_PREFIX_RE.match(path.name)
    if match is None:
        return (-1, 0, path.name)
    return (int(match.group(1)), int(match.group(2) or 0), path.name)


def is_valid_session_id(session_id: str) -> bool:
    return bool(_SESSION_ID_RE.match(session_id))


class UploadSessionManager:
    """Owns the ``<root>/<session_id>/`` directories that group uploaded documents."""

    def __init__(self, root_dir: Path | str) -> None:
        self.root_dir = Path(root_dir)
        self.staging_dir = self.root_dir / STAGING_DIR_NAME
        self._stamp_lock = threading.Lock()
        self._last_stamp = 0

    def resolve(
        self,
        uploads: Optional[Iterable[IncomingUpload]],
        session_id: Optional[str],
    ) -> SessionResolution:
        """Resolve the documents for one request.

        New files always start a fresh session, even when an id was supplied;
        an id alone re-reads a previously stored session.
        """

        files = [upload for upload in (uploads or []) if upload is not None]
        requested_id = (session_id or "").strip() or None

        if files:
            if requested_id:
                LOGGER.info(
                    "Files supplied together with uploadId %s; minting a new session instead",
                    requested_id,
                )
            return self.create_session(files)
        if requested_id:
            return self.load_session(requested_id)
        raise MissingInputError(
            "No PDFs uploaded (field name must be 'pdf') or uploadId missing",
        )

    def create_session(self, uploads: Iterable[IncomingUpload]) -> SessionResolution:
        session_id = uuid.uuid4().hex
        session_dir = self.root_dir / session_id
        session_dir.mkdir(parents=True, exist_ok=False)

        documents: List[Document] = []
        for upload in uploads:
            staged = self.stage_upload(upload)
            destination = session_dir / staged.name
            fallback_copy = self._move(staged, destination)
            # Follow-ups only see the storage name, so both paths derive the same label.
            document = Document(
                display_name=display_name_from_storage(destination.name),
                storage_name=destination.name,
                size_bytes=destination.stat().st_size,
                path=destination,
            )
            documents.append(document)
            LOGGER.info("Moved uploaded file %s -> %s", document.display_name, destination)
            emit_upload_event(
                "upload.file.stored",
                session_id=session_id,
                file_name=document.display_name,
                storage_name=document.storage_name,
                size_bytes=document.size_bytes,
                fallback_copy=fallback_copy,
            )

        emit_upload_event("upload.session.created", session_id=session_id, documents=len(documents))
        return SessionResolution(session_id=session_id, documents=documents)

    def load_session(self, session_id: str) -> SessionResolution:
        if not is_valid_session_id(session_id):
            LOGGER.warning("Rejected malformed uploadId %r", session_id)
            return SessionResolution(session_id=session_id, documents=[])

        session_dir = self.root_dir / session_id
        if not session_dir.is_dir():
            LOGGER.warning("Requested uploadId not found: %s", session_id)
            emit_upload_event("upload.session.missing", session_id=session_id, documents=0)
            return SessionResolution(session_id=session_id, documents=[])

        paths = [
            path
            for path in session_dir.iterdir()
            if path.is_file() and not path.name.startswith(".")
        ]
        documents = [
            Document(
                display_name=display_name_from_storage(path.name),
                storage_name=path.name,
                size_bytes=path.stat().st_size,
                path=path,
            )
            for path in sorted(paths, key=_storage_sort_key)
        ]
        LOGGER.info("Loaded %d files from uploadId %s", len(documents), session_id)
        emit_upload_event("upload.session.resolved", session_id=session_id, documents=len(documents))
        return SessionResolution(session_id=session_id, documents=documents)

    def stage_upload(self, upload: IncomingUpload) -> Path:
        """Spool an incoming upload into the staging area under a prefixed name."""

        self.staging_dir.mkdir(parents=True, exist_ok=True)
        safe_name = sanitize_filename(upload.filename or "")
        stamp = self._next_stamp()

        if hasattr(upload.file, "seek"):
            upload.file.seek(0)
        attempt = 0
        while True:
            name = f"{stamp}_{safe_name}" if attempt == 0 else f"{stamp}-{attempt}_{safe_name}"
            destination = self.staging_dir / name
            try:
                with destination.open("xb") as handle:
                    shutil.copyfileobj(upload.file, handle)
            except FileExistsError:
                attempt += 1
                continue
            return destination

    def _next_stamp(self) -> int:
        with self._stamp_lock:
            stamp = max(int(time.time() * 1000), self._last_stamp + 1)
            self._last_stamp = stamp
            return stamp

    @staticmethod
    def _move(source: Path, destination: Path) -> bool:
        """Move ``source`` to ``destination``; returns ``True`` when a copy was needed."""

        try:
            source.rename(destination)
            return False
        except OSError as error:
            LOGGER.warning(
                "Failed to move %s into session folder (%s); copying instead", source, error
            )
            shutil.copyfile(source, destination)
            source.unlink()
            return True


__all__ = [
    "IncomingUpload",
    "UploadSessionManager",
    "display_name_from_storage",
    "is_valid_session_id",
    "sanitize_filename",
]
