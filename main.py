"""
AI Glass Cutting Assistant Web Application
FastAPI backend that reads glass cutting orders from photos with Gemini and exports the cutting plan.
"""

import io
import os
import sys
import uuid
import asyncio
import logging
from datetime import datetime
from typing import Optional

from PIL import Image

from fastapi import FastAPI, File, UploadFile, BackgroundTasks, HTTPException, Request
from fastapi.responses import HTMLResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware
from pydantic import BaseModel

import app_config
from analysis_service import analyze_order_image
from session_state import (
    AnalysisInProgressError,
    AnalysisSession,
    NoImageSelectedError,
    PreviewRegistry,
    SessionStore,
    UploadedImage,
    idle_status,
)

# Configure logging based on environment
logging.basicConfig(
    level=getattr(logging, app_config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

logger.info("="*60)
logger.info("Starting AI Glass Cutting Assistant")
logger.info("="*60)

APP_VERSION = "1.0.0"
APP_NAME = "Trợ lý Cắt Kính AI"

logger.info(f"Environment: {app_config.ENVIRONMENT}")
logger.info(f"Gemini model: {app_config.GEMINI_MODEL}")
logger.info(f"Gemini API key configured: {bool(app_config.GEMINI_API_KEY)}")
logger.info(f"Max upload size: {app_config.MAX_FILE_SIZE_MB}MB")

SESSION_SECRET = app_config.SESSION_SECRET
if not SESSION_SECRET:
    if app_config.ENVIRONMENT == "production":
        logger.error("SESSION_SECRET is not set! Generating a random one (not secure for production).")
    else:
        logger.warning("SESSION_SECRET is not set; generating a temporary development secret.")
    SESSION_SECRET = uuid.uuid4().hex


class SessionStatusResponse(BaseModel):
    """Response model for the current analysis session."""
    session_id: Optional[str] = None
    state: str
    busy: bool
    has_file: bool
    filename: Optional[str] = None
    preview_url: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None


app = FastAPI(
    title="AI Glass Cutting Assistant",
    version=APP_VERSION,
    docs_url="/docs" if app_config.IS_DEV else None,
    redoc_url="/redoc" if app_config.IS_DEV else None,
)

app.state.sessions = SessionStore(PreviewRegistry())
app.state.analysis_requestor = analyze_order_image
app.state.cleanup_task = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if app_config.IS_DEV else app_config.ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"] if app_config.IS_DEV else ["GET", "POST", "DELETE"],
    allow_headers=["*"] if app_config.IS_DEV else ["Content-Type"],
)

app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    session_cookie=app_config.SESSION_COOKIE,
    max_age=app_config.SESSION_MAX_AGE_HOURS * 60 * 60,
    same_site="lax",
    https_only=app_config.ENVIRONMENT == "production",
)


@app.middleware("http")
async def add_security_headers(request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    csp_header = (
        "default-src 'self'; "
        "base-uri 'self'; "
        "object-src 'none'; "
        "frame-ancestors 'none'; "
        "form-action 'self'; "
        "script-src 'self' cdn.jsdelivr.net; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' blob: data:; "
        "connect-src 'self'; "
    )
    if not app_config.IS_DEV:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        csp_header += "upgrade-insecure-requests; "
    response.headers["Content-Security-Policy"] = csp_header
    return response


BASE_DIR = os.path.dirname(os.path.abspath(__file__))
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "frontend", "templates"))
app.mount("/static", StaticFiles(directory=os.path.join(BASE_DIR, "frontend", "static")), name="static")


# ============= HELPERS =============

def get_session(request: Request, create: bool = True) -> Optional[AnalysisSession]:
    """
    Return the analysis session bound to the browser cookie.

    A new session is only created and stored when create is True; read-only
    routes pass False so anonymous requests do not accumulate sessions.
    """
    sessions = request.app.state.sessions
    session = sessions.get(request.session.get("session_id"))
    if session is None and create:
        session = sessions.create()
        request.session["session_id"] = session.session_id
    return session


async def read_uploaded_image(upload: UploadFile) -> UploadedImage:
    """Read and validate an uploaded order image."""
    if not upload.content_type or not upload.content_type.startswith("image/"):
        logger.error(f"Invalid content type: {upload.content_type}")
        raise HTTPException(status_code=400, detail="Tệp tải lên phải là hình ảnh.")

    data = await upload.read()
    max_size = app_config.MAX_FILE_SIZE_MB * 1024 * 1024
    if len(data) > max_size:
        logger.error(f"File too large: {len(data)} bytes (max {max_size})")
        raise HTTPException(
            status_code=413,
            detail=f"Tệp quá lớn (tối đa {app_config.MAX_FILE_SIZE_MB}MB).",
        )
    if len(data) == 0:
        logger.error("Empty image file received")
        raise HTTPException(status_code=400, detail="Tệp hình ảnh trống.")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            content_type = Image.MIME.get(img.format, upload.content_type)
    except Exception as e:
        logger.error(f"Uploaded file is not a readable image: {e}")
        raise HTTPException(status_code=400, detail="Không đọc được tệp hình ảnh.")

    return UploadedImage(
        filename=upload.filename or "image",
        content_type=content_type,
        data=data,
    )


async def cleanup_sessions_periodically():
    """Expire idle sessions in the background."""
    while True:
        await asyncio.sleep(app_config.SESSION_CLEANUP_INTERVAL_SECONDS)
        try:
            app.state.sessions.cleanup_expired(app_config.SESSION_MAX_AGE_HOURS)
        except Exception as e:
            logger.error(f"Error during session cleanup: {e}")


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    app.state.cleanup_task = asyncio.create_task(cleanup_sessions_periodically())
    logger.info(f"Application started. Session max age: {app_config.SESSION_MAX_AGE_HOURS}h")


@app.on_event("shutdown")
async def shutdown_event():
    task = app.state.cleanup_task
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    logger.info("Application stopped")


# ============= HEALTH =============

@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    sessions = app.state.sessions
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": APP_VERSION,
        "active_sessions": len(sessions),
        "preview_handles": len(sessions.previews),
    }


@app.get("/ready")
async def readiness_check():
    return {
        "ready": True,
        "gemini_configured": bool(app_config.GEMINI_API_KEY),
        "timestamp": datetime.now().isoformat(),
    }


# ============= SESSION ROUTES =============

@app.get("/api/session", response_model=SessionStatusResponse)
async def get_session_status(request: Request):
    """Get the current state of the analysis session."""
    session = get_session(request, create=False)
    if session is None:
        return idle_status()
    return session.to_status()


@app.post("/api/session/file", response_model=SessionStatusResponse)
async def select_file(request: Request, image: UploadFile = File(...)):
    """Select a new order image. Clears any previous result or error."""
    logger.info(f"API REQUEST: POST /api/session/file - {image.filename} ({image.content_type})")
    session = get_session(request)
    uploaded = await read_uploaded_image(image)
    session.select_file(uploaded)
    return session.to_status()


@app.delete("/api/session/file", response_model=SessionStatusResponse)
async def clear_file(request: Request):
    """Clear the selected image."""
    session = get_session(request, create=False)
    if session is None:
        return idle_status()
    session.select_file(None)
    return session.to_status()


@app.post("/api/session/analyze", status_code=202, response_model=SessionStatusResponse)
async def analyze(request: Request, background_tasks: BackgroundTasks):
    """
    Start analyzing the selected image.

    Returns immediately in the analyzing state; poll GET /api/session for the outcome.
    """
    session = get_session(request)
    try:
        ticket = session.begin_analysis()
    except NoImageSelectedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    background_tasks.add_task(session.finish_analysis, ticket, request.app.state.analysis_requestor)
    logger.info(f"Session {session.session_id}: analysis queued")
    return session.to_status()


@app.get("/api/session/export")
async def export_result(request: Request):
    """Download the result as plain text. 204 when there is no result yet."""
    session = get_session(request, create=False)
    artifact = session.export_result() if session else None
    if artifact is None:
        return Response(status_code=204)

    logger.info(f"Session {session.session_id}: exported {len(artifact.content)} bytes")
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": artifact.content_disposition},
    )


@app.delete("/api/session", response_model=SessionStatusResponse)
async def reset_session(request: Request):
    """Reset the session, releasing the uploaded image."""
    session = get_session(request, create=False)
    if session is None:
        return idle_status()
    try:
        session.reset()
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.to_status()


@app.get("/api/preview/{handle}")
async def get_preview_image(handle: str, request: Request):
    """Serve the caller's uploaded image through its preview handle."""
    if not PreviewRegistry.is_valid_handle(handle):
        raise HTTPException(status_code=400, detail="Invalid preview handle")

    session = get_session(request, create=False)
    if session is None or session.preview_handle != handle:
        raise HTTPException(status_code=404, detail="Preview not found")

    image = request.app.state.sessions.previews.resolve(handle)
    if image is None:
        raise HTTPException(status_code=404, detail="Preview not found")

    return StreamingResponse(
        io.BytesIO(image.data),
        media_type=image.content_type,
        headers={
            "Content-Disposition": "inline",
            "Cache-Control": "no-store",
        },
    )


@app.get("/", response_class=HTMLResponse)
async def get_frontend(request: Request):
    """Serve the HTML frontend using Jinja2 template."""
    return templates.TemplateResponse(request, "index.html", {
        "config": {
            "app_name": APP_NAME,
            "max_file_size_mb": app_config.MAX_FILE_SIZE_MB,
            "year": datetime.now().year,
        }
    })


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
