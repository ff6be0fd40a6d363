import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parents[1]

# Blob storage mode: local / gcp / azure
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")

# Work queue mode: local / azure
QUEUE_BACKEND = os.getenv("QUEUE_BACKEND", "azure" if STORAGE_BACKEND == "azure" else "local")

DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
LOCAL_UPLOAD_DIR = DATA_DIR / "uploads"
LOCAL_QUEUE_DIR = DATA_DIR / "queue"

DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'images.db'}")

# Used to build locators for the local backend (served under /uploads)
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080").rstrip("/")

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
MAX_DIMENSION = int(os.getenv("MAX_DIMENSION", "10000"))
LISTING_LIMIT = int(os.getenv("LISTING_LIMIT", "10"))

# Passed to every backend call so a stalled service surfaces as an error
BACKEND_TIMEOUT_SECONDS = int(os.getenv("BACKEND_TIMEOUT_SECONDS", "30"))

AZURE_CONN_STR = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
AZURE_CONTAINER = os.getenv("AZURE_CONTAINER")
AZURE_QUEUE_NAME = os.getenv("AZURE_QUEUE_NAME", "resize-jobs")

GCS_BUCKET = os.getenv("GCS_BUCKET")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
