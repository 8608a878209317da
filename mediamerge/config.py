import os

# ----------------------------
# Staging
# ----------------------------
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "merged")
MAX_BYTES = int(os.getenv("MAX_BYTES", str(300 * 1024 * 1024)))  # 300MB default
UPLOAD_CHUNK_SIZE = 1024 * 1024

# ----------------------------
# Engine
# ----------------------------
FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")
FFMPEG_TIMEOUT = float(os.getenv("FFMPEG_TIMEOUT", "2400"))  # seconds per stage
PROBE_TIMEOUT = float(os.getenv("PROBE_TIMEOUT", "30"))
KILL_GRACE_SECONDS = float(os.getenv("KILL_GRACE_SECONDS", "5"))
STDERR_TAIL = 4000

# Output targets
TARGET_PIXFMT = "yuv420p"
TARGET_AB = "128k"
TARGET_AUDIO_AB = "192k"

DEFAULT_AUDIO_LEVEL = 50

# Toggle verbose debug probes (logs ffprobe JSON blobs)
DEBUG_PROBES = os.getenv("DEBUG_PROBES", "0").strip() not in ("0", "false", "False")

# ----------------------------
# Server
# ----------------------------
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
SHUTDOWN_GRACE_SECONDS = int(os.getenv("SHUTDOWN_GRACE_SECONDS", "30"))
