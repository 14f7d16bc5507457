"""
Application Configuration

Loads environment variables and provides typed settings
for the application. Uses python-dotenv to load from .env file.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from the project root
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- App Settings ---
API_V1_PREFIX = "/api/v1"
PROJECT_NAME = "Nifya"
SERVICE_NAME = "nifya-orchestration-service"
APP_VERSION: str = os.getenv("APP_VERSION", "1.0.0")
ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
BUILD_TIMESTAMP: str = os.getenv("BUILD_TIMESTAMP", "")
COMMIT_SHA: str = os.getenv("COMMIT_SHA", "unknown")
DEPLOYMENT_ID: str = os.getenv("DEPLOYMENT_ID", "local")

# Netlify previews and local development hosts
CORS_ALLOWED_ORIGIN_REGEX: str = os.getenv(
    "CORS_ALLOWED_ORIGIN_REGEX",
    r"^https://.*\.netlify\.app$|^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
)

# --- Supabase ---
SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# --- Postgres (direct connection, used by the migration runner) ---
DATABASE_URL: str = os.getenv("DATABASE_URL", "")
RUN_MIGRATIONS_ON_STARTUP: bool = _env_bool("RUN_MIGRATIONS_ON_STARTUP")
MIGRATIONS_DIR: Path = Path(
    os.getenv(
        "MIGRATIONS_DIR",
        str(Path(__file__).resolve().parent.parent.parent / "supabase" / "migrations"),
    )
)

# --- Authentication ---
# "jwt" verifies tokens issued by this service; "firebase" verifies
# Firebase ID tokens with the Admin SDK.
AUTH_PROVIDER: str = os.getenv("AUTH_PROVIDER", "firebase").strip().lower()
JWT_SECRET: str = os.getenv("JWT_SECRET", "")
JWT_REFRESH_SECRET: str = os.getenv("JWT_REFRESH_SECRET", "")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TTL_MINUTES: int = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "15"))
REFRESH_TOKEN_TTL_DAYS: int = int(os.getenv("REFRESH_TOKEN_TTL_DAYS", "7"))
SERVICE_API_KEY: str = os.getenv("SERVICE_API_KEY", "")

# --- Firebase ---
FIREBASE_PROJECT_ID: str = os.getenv("FIREBASE_PROJECT_ID", "")
FIREBASE_API_KEY: str = os.getenv("FIREBASE_API_KEY", "")

# --- Google Cloud / Pub/Sub ---
GOOGLE_CLOUD_PROJECT: str = os.getenv("GOOGLE_CLOUD_PROJECT", "")
GOOGLE_APPLICATION_CREDENTIALS: str = os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")
PUBSUB_ENABLED: bool = _env_bool("PUBSUB_ENABLED")
PUBSUB_PUBLISH_TIMEOUT_SECONDS: float = float(os.getenv("PUBSUB_PUBLISH_TIMEOUT_SECONDS", "10"))
EMAIL_IMMEDIATE_TOPIC: str = os.getenv("EMAIL_IMMEDIATE_TOPIC", "email-notifications-immediate")
EMAIL_DAILY_TOPIC: str = os.getenv("EMAIL_DAILY_TOPIC", "email-notifications-daily")
TEST_EMAIL: str = os.getenv("TEST_EMAIL", "")

# --- Subscription worker ---
SUBSCRIPTION_WORKER_URL: str = os.getenv("SUBSCRIPTION_WORKER_URL", "http://localhost:8080")


def is_production() -> bool:
    """True when running with ENVIRONMENT=production."""
    return ENVIRONMENT.lower() == "production"


def validate_supabase_config() -> bool:
    """Check that all required Supabase credentials are present and non-empty."""
    missing = []
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_ANON_KEY:
        missing.append("SUPABASE_ANON_KEY")
    if not SUPABASE_SERVICE_ROLE_KEY:
        missing.append("SUPABASE_SERVICE_ROLE_KEY")
    if missing:
        raise EnvironmentError(
            f"Missing required Supabase environment variables: {', '.join(missing)}. "
            f"Please fill in your .env file at: {_env_path}"
        )
    return True


def validate_database_url() -> bool:
    """Check that a direct Postgres connection string is configured."""
    if not DATABASE_URL:
        raise EnvironmentError(
            "Missing required environment variable: DATABASE_URL. "
            f"Please fill in your .env file at: {_env_path}"
        )
    return True


def is_pubsub_configured() -> bool:
    """
    Check if Pub/Sub publishing is enabled.

    Publishing requires PUBSUB_ENABLED=true and a Google Cloud project.
    When disabled, development builds log mock message IDs instead.
    """
    return PUBSUB_ENABLED and bool(GOOGLE_CLOUD_PROJECT)


def is_firebase_configured() -> bool:
    """Check if the Firebase Admin SDK can be initialized."""
    return bool(FIREBASE_PROJECT_ID or GOOGLE_CLOUD_PROJECT)
