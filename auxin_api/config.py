import os
from dotenv import load_dotenv
from pathlib import Path

# Project root (the directory holding pyproject.toml and .env)
BASE_DIR = Path(__file__).resolve().parent.parent

dotenv_path = os.path.join(BASE_DIR, ".env")
load_dotenv(dotenv_path=dotenv_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Session tokens
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", str(7 * 24 * 60)))

# Several names are accepted for the connection string
MONGO_URI = (
    os.getenv("MONGODB_URI")
    or os.getenv("MONGODB_URI_PROD")
    or os.getenv("DATABASE_URL")
    or os.getenv("MONGO_URI")
    or ""
)
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "auxin")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "").strip()
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "").strip()
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "").strip()

FRONTEND_URL = os.getenv(
    "FRONTEND_URL", "https://auxin.media" if IS_PRODUCTION else "http://localhost:5173"
)

SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "").strip()
SENDER_EMAIL = os.getenv("SENDER_EMAIL") or os.getenv("MAIL_FROM", "")

BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "UTC")


def allowed_origins() -> list:
    """Frontend URL, local dev servers and any extra ALLOWED_ORIGINS entries."""
    origins = [
        FRONTEND_URL,
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:5174",
        "http://localhost:5175",
    ]
    extra = os.getenv("ALLOWED_ORIGINS", "")
    origins.extend(origin.strip() for origin in extra.split(",") if origin.strip())
    if IS_PRODUCTION:
        origins.append("https://auxin.media")
    # keep order, drop duplicates
    return list(dict.fromkeys(origin for origin in origins if origin))
