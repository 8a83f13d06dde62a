import os

BACKEND_TOKEN = os.environ.get("BACKEND_TOKEN", "")
BACKEND_PORT = int(os.environ.get("BACKEND_PORT", "49671"))
APP_DATA_DIR = os.environ.get("APP_DATA_DIR", os.path.join(os.getcwd(), "data"))
LOG_DIR = os.environ.get("LOG_DIR", os.path.join(APP_DATA_DIR, "logs"))

DB_PATH = os.path.join(APP_DATA_DIR, "rooms.db")

# Remote processing service
ROOM_API_URL = os.environ.get("ROOM_API_URL", "http://127.0.0.1:54321/functions/v1/empty-room")
ROOM_API_KEY = os.environ.get("ROOM_API_KEY", "")
STYLE_WEBHOOK_URL = os.environ.get("STYLE_WEBHOOK_URL", "http://127.0.0.1:5678/webhook/apply-style")
STORAGE_PUBLIC_URL = os.environ.get("STORAGE_PUBLIC_URL", "")
HTTP_TIMEOUT_SEC = float(os.environ.get("HTTP_TIMEOUT_SEC", "60"))
HTTP_CONNECT_TIMEOUT_SEC = float(os.environ.get("HTTP_CONNECT_TIMEOUT_SEC", "10"))

# Polling
POLL_INTERVAL_MS = int(os.environ.get("POLL_INTERVAL_MS", "3000"))
POLL_MAX_ATTEMPTS = int(os.environ.get("POLL_MAX_ATTEMPTS", "40"))
STYLE_POLL_INTERVAL_MS = int(os.environ.get("STYLE_POLL_INTERVAL_MS", str(POLL_INTERVAL_MS)))
STYLE_POLL_MAX_ATTEMPTS = int(os.environ.get("STYLE_POLL_MAX_ATTEMPTS", str(POLL_MAX_ATTEMPTS)))
POLL_MAX_CONSECUTIVE_FAILURES = int(os.environ.get("POLL_MAX_CONSECUTIVE_FAILURES", "3"))

# Finished pipelines stay readable this long before the registry drops them
PIPELINE_RETENTION_SEC = float(os.environ.get("PIPELINE_RETENTION_SEC", "300"))


def ensure_dirs() -> None:
    os.makedirs(APP_DATA_DIR, exist_ok=True)
    os.makedirs(LOG_DIR, exist_ok=True)
