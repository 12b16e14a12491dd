"""
Configuration for the glass cutting assistant.
All values come from environment variables with development-friendly defaults.
"""

import os

# Environment
ENVIRONMENT = os.environ.get("ENVIRONMENT", "production").lower()
IS_DEV = ENVIRONMENT == "development"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Gemini API
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_API_URL = os.environ.get(
    "GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta"
).rstrip("/")
PROMPT_TEMPLATE_PATH = os.environ.get(
    "PROMPT_TEMPLATE_PATH",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "prompt_template.txt"),
)

# Uploads
MAX_FILE_SIZE_MB = int(os.environ.get("MAX_FILE_SIZE_MB", "10"))
ALLOWED_ORIGINS = [o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "*").split(",")]

# Browser sessions
SESSION_SECRET = os.environ.get("SESSION_SECRET", "")
SESSION_COOKIE = "glass_cut_session"
SESSION_MAX_AGE_HOURS = int(os.environ.get("SESSION_MAX_AGE_HOURS", "24"))
SESSION_CLEANUP_INTERVAL_SECONDS = int(os.environ.get("SESSION_CLEANUP_INTERVAL_SECONDS", "600"))
