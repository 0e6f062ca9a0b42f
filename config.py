"""Configuration settings for the Storage Bucket service."""
import os


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, ""))
    except ValueError:
        return default


# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _int_env("PORT", 5100)
APP_ENV = os.getenv("APP_ENV", os.getenv("NODE_ENV", "development"))

# Storage limits
MAX_FILE_SIZE = _int_env("MAX_FILE_SIZE", 100 * 1024 * 1024)  # 100MB

# Not configurable from the environment
ALLOWED_MIME_TYPES = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/json",
    "application/zip",
    "video/mp4",
    "audio/mpeg",
]

# Directory paths
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
METADATA_FILENAME = "metadata.json"
TEMP_DIRNAME = ".tmp"

# Logging
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
