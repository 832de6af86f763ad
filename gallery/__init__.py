import logging
import os
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# --- Path Configuration ---
if getattr(sys, 'frozen', False):
    # If the application is run as a bundle, the project root is where the executable is.
    PROJECT_ROOT = os.path.dirname(sys.executable)
else:
    # In development, __file__ is /gallery/__init__.py, so we go up one level to the project root.
    PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# --- Constants ---
DATA_DIR = os.environ.get("GALLERY_DATA_DIR") or os.path.join(PROJECT_ROOT, "data")
APP_NAME = "Image Gallery"
APP_VERSION = "1.0.0"
LOG_LEVEL = os.environ.get("GALLERY_LOG_LEVEL", "INFO").upper()
PORT = int(os.environ.get("PORT", "3019"))
SUPPORTED_IMAGE_FORMATS = ["jpg", "jpeg", "png", "gif", "webp", "svg"]
SUPPORTED_DATA_FORMATS = ["json", "sqlite"]


# --- Logging ---
def get_logger() -> logging.Logger:
    """Returns the package logger, attaching a stream handler the first time."""
    package_logger = logging.getLogger("gallery")
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)
    package_logger.setLevel(LOG_LEVEL)
    return package_logger

logger = get_logger()


# --- Application Initialization ---
app = FastAPI(
    title="image-gallery",
    description="Image gallery metadata over JSON files or SQLite databases.",
    version=APP_VERSION,
)

os.makedirs(DATA_DIR, exist_ok=True)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import routes after the app setup is complete
from . import routes
