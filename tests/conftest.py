import os
import tempfile

# Settings are read once at import time, so the test environment goes in first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-careportal")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("PASSWORD_PEPPER", "test-pepper")
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")
os.environ.setdefault("ADMIN_PASSWORD", "")
os.environ.setdefault("STORE_RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("CAREPORTAL_HOME", tempfile.mkdtemp(prefix="careportal-cli-"))
