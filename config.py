import os
import secrets
from pathlib import Path
from dotenv import load_dotenv

# Load .env reliably both locally and on server (regardless of current working directory)
BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(ENV_PATH if ENV_PATH.exists() else None)


def _default_sqlite_url() -> str:
    db_file = BASE_DIR / "artadventure.sqlite3"
    return f"sqlite:///{db_file.resolve().as_posix()}"


DATABASE_URL = os.getenv("DATABASE_URL", "").strip() or _default_sqlite_url()

# JWT
SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Seeded on startup when no admin with this username exists
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@artadventurehub.com")

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]

# ADMIN_IP_WHITELIST=10.0.0.1,10.0.0.2 in .env
ADMIN_IP_WHITELIST = [ip.strip() for ip in os.getenv("ADMIN_IP_WHITELIST", "").split(",") if ip.strip()]

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(5 * 1024 * 1024)))

PARTICIPATION_POINTS = int(os.getenv("PARTICIPATION_POINTS", "100"))
MIN_WITHDRAWAL_AMOUNT = float(os.getenv("MIN_WITHDRAWAL_AMOUNT", "100"))

VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY", "").strip()
VAPID_CLAIM_EMAIL = os.getenv("VAPID_CLAIM_EMAIL", "admin@artadventurehub.com")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3033"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes")
