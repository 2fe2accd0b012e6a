import os
from dataclasses import dataclass
from typing import Optional

# Optional: load a local .env file if present.
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    # If python-dotenv isn't installed or .env isn't present, that's fine.
    pass


class ConfigError(RuntimeError):
    """Raised at startup when the configuration cannot be used safely."""


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide secrets via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: set VCARE_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: VCARE_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("VCARE_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("VCARE_DB_PATH", "./vcare_access.sqlite")
    )

    # -----------------
    # Auth (JWT)
    # -----------------
    # There is no built-in default. validate_config() refuses to start without one.
    AUTH_JWT_SECRET: str | None = (
        (os.environ.get("AUTH_JWT_SECRET") or "").strip()
        or (os.environ.get("SESSION_SECRET") or "").strip()
        or None
    )

    # Bootstrap first admin user if users table is empty (both must be set)
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str | None = (os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL") or "").strip() or None
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str | None = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD") or None

    # -----------------
    # Server-side sessions
    # -----------------
    AUTH_SESSION_COOKIE_NAME: str = os.environ.get("AUTH_SESSION_COOKIE_NAME", "vcare_sid")
    AUTH_SESSION_TTL_MINUTES: int = int(os.environ.get("AUTH_SESSION_TTL_MINUTES", "1440"))
    AUTH_COOKIE_DOMAIN: str | None = (os.environ.get("AUTH_COOKIE_DOMAIN") or "").strip() or None
    AUTH_COOKIE_PATH: str = os.environ.get("AUTH_COOKIE_PATH", "/")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "lax")  # lax|strict|none

    # If AUTH_COOKIE_SECURE is unset, we default to secure cookies when PUBLIC_APP_URL is https.
    PUBLIC_APP_URL: str = os.environ.get("PUBLIC_APP_URL", "http://localhost:5173")
    AUTH_COOKIE_SECURE: bool = (
        _env_bool("AUTH_COOKIE_SECURE", None)
        if _env_bool("AUTH_COOKIE_SECURE", None) is not None
        else PUBLIC_APP_URL.lower().startswith("https://")
    )

    # -----------------
    # Rate limiting (login / register)
    # -----------------
    LOGIN_RATE_LIMIT: int = int(os.environ.get("LOGIN_RATE_LIMIT", "10"))
    LOGIN_RATE_WINDOW_SECONDS: int = int(os.environ.get("LOGIN_RATE_WINDOW_SECONDS", "60"))

    # -----------------
    # Digital share economics
    # -----------------
    # Versions (bump when the role tables change)
    ROLE_TABLES_VERSION: str = os.environ.get("ROLE_TABLES_VERSION", "v2")
    # Optional override; defaults to the JSON document shipped with the package.
    ROLE_TABLES_PATH: str | None = (os.environ.get("ROLE_TABLES_PATH") or "").strip() or None
    SHAREHOLDER_MIN_SHARES: float = float(os.environ.get("SHAREHOLDER_MIN_SHARES", "100"))

    # -----------------
    # CORS (development)
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
    )


def load_config() -> Config:
    return Config()


def validate_config(cfg: Config) -> Config:
    """Fail fast on settings the service cannot run without."""
    if not (cfg.AUTH_JWT_SECRET or "").strip():
        raise ConfigError("AUTH_JWT_SECRET (or SESSION_SECRET) must be set")
    if int(cfg.LOGIN_RATE_LIMIT) < 1 or int(cfg.LOGIN_RATE_WINDOW_SECONDS) < 1:
        raise ConfigError("LOGIN_RATE_LIMIT and LOGIN_RATE_WINDOW_SECONDS must be >= 1")
    return cfg
