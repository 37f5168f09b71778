"""
Configuration module for the Ledgerly backend.

Settings come from environment variables (a local .env file is loaded
first). Required values are checked on import unless VALIDATE_CONFIG=false.
"""
import os
from typing import List
from dotenv import load_dotenv

# Load .env file
load_dotenv()

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


class Settings:
    """Application settings loaded from environment variables."""

    # Supabase project: PostgREST for data, Auth for tokens
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_PUBLISHABLE_KEY: str = os.getenv("SUPABASE_PUBLISHABLE_KEY", "")

    @property
    def SUPABASE_JWKS_URL(self) -> str:
        """JWKS endpoint holding the ES256 keys access tokens are signed with."""
        if not self.SUPABASE_URL:
            return ""
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1/.well-known/jwks.json"

    @property
    def SUPABASE_ISSUER(self) -> str:
        """Issuer claim expected on Supabase access tokens."""
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1"

    # Recurring rules
    # Stored on every rule; scheduling itself is calendar-date based
    DEFAULT_RULE_TIMEZONE: str = os.getenv("DEFAULT_RULE_TIMEZONE", "UTC")
    # Longest window (in days) a single read or materialize request may span
    MAX_MATERIALIZE_WINDOW_DAYS: int = _env_int("MAX_MATERIALIZE_WINDOW_DAYS", 3660)

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Only applied in production; other environments allow all origins
    CORS_ORIGINS: List[str] = _env_list("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

    @classmethod
    def validate(cls) -> None:
        """
        Check required and malformed settings.

        Raises:
            ValueError: Listing every problem found.
        """
        problems = [
            f"{key} is not set"
            for key, value in {
                "SUPABASE_URL": cls.SUPABASE_URL,
                "SUPABASE_PUBLISHABLE_KEY": cls.SUPABASE_PUBLISHABLE_KEY,
            }.items()
            if not value
        ]

        if cls.LOG_LEVEL.upper() not in _LOG_LEVELS:
            problems.append(f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}")
        if cls.MAX_MATERIALIZE_WINDOW_DAYS < 1:
            problems.append("MAX_MATERIALIZE_WINDOW_DAYS must be >= 1")

        if problems:
            raise ValueError(
                f"Invalid configuration: {'; '.join(problems)}. "
                "Please check your .env file."
            )

    @classmethod
    def is_production(cls) -> bool:
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def is_development(cls) -> bool:
        return cls.ENVIRONMENT.lower() == "development"


settings = Settings()

# Tests and introspection set VALIDATE_CONFIG=false
if os.getenv("VALIDATE_CONFIG", "true").lower() == "true":
    try:
        settings.validate()
    except ValueError as e:
        # Development only warns so the docs page still loads
        if settings.is_development():
            print(f"Warning: {e}")
            print("   The app may not work correctly until you configure your .env file.")
        else:
            raise
