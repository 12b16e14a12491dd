"""Pytest configuration for the glass cutting assistant tests."""

import io
import os

# Must be set before app_config is imported
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

import main
from session_state import AnalysisSession, PreviewRegistry, SessionStore, UploadedImage

SAMPLE_MARKDOWN = (
    "### 1. Trích xuất đơn hàng\n"
    "STT|Kích thước|Số lượng\n"
    "---\n"
    "1|**500x800**|2\n"
    "### 2. Kế hoạch cắt\n"
    "Khổ 1: **2 tấm**\n"
)


def make_png(color: str = "red", size: tuple = (4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def image_a() -> UploadedImage:
    return UploadedImage(filename="a.png", content_type="image/png", data=make_png("red"))


@pytest.fixture
def image_b() -> UploadedImage:
    return UploadedImage(filename="b.png", content_type="image/png", data=make_png("blue"))


@pytest.fixture
def previews() -> PreviewRegistry:
    return PreviewRegistry()


@pytest.fixture
def session(previews: PreviewRegistry) -> AnalysisSession:
    return AnalysisSession(session_id="session-1", previews=previews)


@pytest.fixture
def requestor() -> AsyncMock:
    """Analysis requestor that succeeds with a sample plan."""
    return AsyncMock(return_value=SAMPLE_MARKDOWN)


@pytest.fixture
def client(requestor: AsyncMock):
    """Test client with a fresh session store and a mocked analysis requestor."""
    original_sessions = main.app.state.sessions
    original_requestor = main.app.state.analysis_requestor
    main.app.state.sessions = SessionStore(PreviewRegistry())
    main.app.state.analysis_requestor = requestor
    try:
        yield TestClient(main.app)
    finally:
        main.app.state.sessions = original_sessions
        main.app.state.analysis_requestor = original_requestor
