"""
Session state for the glass cutting assistant.

One AnalysisSession exists per browser session. It owns the uploaded order
image, its preview handle, the analysis result or error and the busy flag,
and enforces the upload -> analyze -> display -> export transitions.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from export_text import ExportArtifact, build_export_artifact

logger = logging.getLogger(__name__)

NO_IMAGE_MESSAGE = "Vui lòng chọn một hình ảnh để phân tích."
ERROR_PREFIX = "Đã xảy ra lỗi: "
UNKNOWN_ERROR_MESSAGE = "lỗi không xác định"

PREVIEW_HANDLE_RE = re.compile(r'^[a-f0-9]{32}$')


class SessionError(Exception):
    """Base class for invalid session transitions."""


class NoImageSelectedError(SessionError):
    def __init__(self):
        super().__init__(NO_IMAGE_MESSAGE)


class AnalysisInProgressError(SessionError):
    def __init__(self):
        super().__init__("Đang phân tích, vui lòng đợi.")


@dataclass(frozen=True)
class UploadedImage:
    """An order image selected by the user."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class PreviewRegistry:
    """
    Revocable handles for uploaded images.

    A handle resolves to its image until it is revoked, after which the
    image bytes are no longer referenced by the registry.
    """

    def __init__(self):
        self._images: Dict[str, UploadedImage] = {}

    def create(self, image: UploadedImage) -> str:
        handle = uuid.uuid4().hex
        self._images[handle] = image
        logger.debug(f"Preview handle created: {handle} ({image.size} bytes)")
        return handle

    def resolve(self, handle: str) -> Optional[UploadedImage]:
        return self._images.get(handle)

    def revoke(self, handle: Optional[str]) -> None:
        if handle and self._images.pop(handle, None) is not None:
            logger.debug(f"Preview handle revoked: {handle}")

    def __len__(self) -> int:
        return len(self._images)

    @staticmethod
    def is_valid_handle(handle: str) -> bool:
        return bool(PREVIEW_HANDLE_RE.match(handle))


class SessionStatus(str, Enum):
    IDLE = "idle"
    READY = "ready"
    ANALYZING = "analyzing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class AnalysisTicket:
    """The image being analyzed and the selection it belongs to."""
    image: UploadedImage
    selection_id: int


AnalysisRequestor = Callable[[UploadedImage], Awaitable[str]]


def describe_failure(exc: BaseException) -> str:
    """Human readable message for a failed analysis call."""
    text = str(exc).strip()
    if text:
        return text
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message.strip():
        return message.strip()
    return UNKNOWN_ERROR_MESSAGE


def idle_status() -> Dict[str, Any]:
    """Status reported to a browser that has no session yet."""
    return {
        "session_id": None,
        "state": SessionStatus.IDLE.value,
        "busy": False,
        "has_file": False,
        "filename": None,
        "preview_url": None,
        "result": None,
        "error": None,
    }


@dataclass
class AnalysisSession:
    """State machine for one browser session."""
    session_id: str
    previews: PreviewRegistry
    image: Optional[UploadedImage] = None
    preview_handle: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None
    busy: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)
    _selection_id: int = 0

    @property
    def state(self) -> SessionStatus:
        if self.busy:
            return SessionStatus.ANALYZING
        if self.result is not None:
            return SessionStatus.SUCCEEDED
        if self.error is not None:
            return SessionStatus.FAILED
        if self.image is not None:
            return SessionStatus.READY
        return SessionStatus.IDLE

    def _touch(self) -> None:
        self.last_activity = datetime.now()

    def _release_preview(self) -> None:
        self.previews.revoke(self.preview_handle)
        self.preview_handle = None

    def select_file(self, image: Optional[UploadedImage]) -> None:
        """Select a new image (or clear the selection) and drop any previous outcome."""
        self._touch()
        self._selection_id += 1
        self.result = None
        self.error = None
        self._release_preview()
        self.image = image
        if image is not None:
            self.preview_handle = self.previews.create(image)
            logger.info(f"Session {self.session_id}: selected {image.filename} ({image.size} bytes)")
        else:
            logger.info(f"Session {self.session_id}: selection cleared")

    def begin_analysis(self) -> AnalysisTicket:
        """
        Validate and enter the analyzing state.

        Raises:
            NoImageSelectedError: no image is selected; the error is also
                stored on the session
            AnalysisInProgressError: another analysis is still running
        """
        self._touch()
        if self.busy:
            raise AnalysisInProgressError()
        if self.image is None:
            self.result = None
            self.error = NO_IMAGE_MESSAGE
            raise NoImageSelectedError()

        self.busy = True
        self.result = None
        self.error = None
        logger.info(f"Session {self.session_id}: analysis started for {self.image.filename}")
        return AnalysisTicket(image=self.image, selection_id=self._selection_id)

    async def finish_analysis(self, ticket: AnalysisTicket, requestor: AnalysisRequestor) -> None:
        """Run the analysis call for a ticket and record its outcome."""
        try:
            result = await requestor(ticket.image)
        except Exception as e:
            logger.error(f"Session {self.session_id}: analysis failed: {type(e).__name__}: {e}")
            if self._is_current(ticket):
                self.result = None
                self.error = ERROR_PREFIX + describe_failure(e)
        else:
            if self._is_current(ticket):
                self.result = result
                self.error = None
                logger.info(f"Session {self.session_id}: analysis succeeded ({len(result)} chars)")
        finally:
            if not self._is_current(ticket):
                logger.info(f"Session {self.session_id}: selection changed during analysis, outcome discarded")
            self.busy = False
            self._touch()

    async def start_analysis(self, requestor: AnalysisRequestor) -> None:
        ticket = self.begin_analysis()
        await self.finish_analysis(ticket, requestor)

    def _is_current(self, ticket: AnalysisTicket) -> bool:
        return ticket.selection_id == self._selection_id

    def export_result(self) -> Optional[ExportArtifact]:
        """Plain text export of the result, or None when there is no result."""
        self._touch()
        return build_export_artifact(self.result)

    def reset(self) -> None:
        if self.busy:
            raise AnalysisInProgressError()
        self._selection_id += 1
        self._release_preview()
        self.image = None
        self.result = None
        self.error = None
        self._touch()
        logger.info(f"Session {self.session_id}: reset")

    def to_status(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "busy": self.busy,
            "has_file": self.image is not None,
            "filename": self.image.filename if self.image else None,
            "preview_url": f"/api/preview/{self.preview_handle}" if self.preview_handle else None,
            "result": self.result,
            "error": self.error,
        }


class SessionStore:
    """In-memory sessions keyed by the id stored in the browser cookie."""

    def __init__(self, previews: Optional[PreviewRegistry] = None):
        self.previews = previews or PreviewRegistry()
        self._sessions: Dict[str, AnalysisSession] = {}

    def create(self) -> AnalysisSession:
        session = AnalysisSession(session_id=uuid.uuid4().hex, previews=self.previews)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id}")
        return session

    def get(self, session_id: Optional[str]) -> Optional[AnalysisSession]:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session:
            session._release_preview()

    def cleanup_expired(self, max_age_hours: int = 24) -> List[str]:
        """Drop idle sessions older than max_age_hours and release their previews."""
        now = datetime.now()
        expired = [
            sid for sid, s in self._sessions.items()
            if not s.busy and (now - s.last_activity).total_seconds() / 3600 > max_age_hours
        ]
        for sid in expired:
            self.discard(sid)
            logger.info(f"Cleaned up expired session: {sid}")
        return expired

    def __len__(self) -> int:
        return len(self._sessions)
