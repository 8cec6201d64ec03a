import os
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"

TEMP_DECODE_DIR = str(DATA_DIR / "temp_decode")

RELAY_URL = os.getenv("TRANSCRIPTION_RELAY_URL", "http://127.0.0.1:8000").strip()
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))
MAX_PROCESS_UPLOAD_BYTES = int(os.getenv("MAX_PROCESS_UPLOAD_BYTES", str(500 * 1024 * 1024)))
REEL_REQUEST_TIMEOUT = float(os.getenv("REEL_REQUEST_TIMEOUT", "30"))

CORS_ORIGIN_REGEX = r"^https?://(localhost|127\.0\.0\.1|[0-9]{1,3}(?:\.[0-9]{1,3}){3})(:[0-9]+)?$"
