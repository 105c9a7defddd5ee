"""
Media API configuration, read from the environment once at import.
"""

import os

# ============================================
# Storage service
# ============================================

STORAGE_BASE_URL = os.getenv("STORAGE_BASE_URL", "http://pocketbase:8090").rstrip("/")
STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "30"))

AVATAR_COLLECTION = os.getenv("AVATAR_COLLECTION", "users")
AVATAR_FIELD = os.getenv("AVATAR_FIELD", "avatar")
IMAGE_COLLECTION = os.getenv("IMAGE_COLLECTION", "images")
IMAGE_FIELD = os.getenv("IMAGE_FIELD", "image")

# ============================================
# HTTP boundary
# ============================================

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/")
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "5"))

# Internal error details are only exposed in development
APP_ENV = os.getenv("APP_ENV", "production").lower()
DEBUG_ERRORS = APP_ENV == "development"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
