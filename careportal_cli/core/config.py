# careportal_cli/core/config.py
from pathlib import Path
import os

# Backend base URL
BASE_URL = os.environ.get("CAREPORTAL_URL", "http://localhost:8000")

# CA Certificate for SSL verification (None = use default, path = custom CA)
CA_CERT = os.environ.get("CAREPORTAL_CA_CERT", "")

# Request timeout in seconds
TIMEOUT = float(os.environ.get("CAREPORTAL_TIMEOUT", "10"))

# Local data folder (session tokens)
APP_DIR = Path(os.environ.get("CAREPORTAL_HOME", str(Path.home() / ".careportal")))

# Session file (access + refresh token)
SESSION_FILE = APP_DIR / "session.json"

# Make sure the folder exists
APP_DIR.mkdir(parents=True, exist_ok=True)
