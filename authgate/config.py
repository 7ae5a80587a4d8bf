"""
AuthGate — Application Configuration
======================================

What:  Centralized service configuration using Pydantic Settings.
How:   Pydantic Settings reads environment variables (or a .env file),
       validates types/ranges, and exposes a module-level `settings` object.
Who:   Imported by the application factory; components that need settings
       also accept an explicit `Settings` instance (tests build their own).

Note:
    Database clients are NOT configured here. They live in a separate JSON
    document (see `authgate.discovery` and `authgate.registry`). The `db_*`
    connection fields below are only the environment fallback used when that
    document cannot be found.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_SESSION_SECRET = "change-me-authgate-dev-secret"


class Settings(BaseSettings):
    """
    Service settings loaded from environment variables.

    Production deployments MUST override SESSION_SECRET and should enable
    SESSION_HTTPS_ONLY.
    """

    # ── Database Registry ─────────────────────────────────────────────────
    # What: Explicit path to the client registry document (optional)
    # When unset, `db_config_filename` is searched for by ConfigDiscovery
    db_config_path: Optional[str] = Field(default=None)
    db_config_filename: str = Field(default="config.json")

    # What: Fixed deployment root tried by ConfigDiscovery after the
    # relative candidates
    deploy_root: str = Field(default="/opt/authgate")

    # What: Bounds client construction at startup (seconds)
    db_connect_timeout: float = Field(default=10.0, gt=0, le=120)

    # What: Attempts for the startup connectivity probe (tenacity)
    db_connect_attempts: int = Field(default=2, ge=1, le=10)

    # What: Per-query bound handed to asyncpg as command_timeout (seconds)
    db_query_timeout: float = Field(default=30.0, gt=0, le=600)

    db_pool_pre_ping: bool = Field(default=True)
    db_pool_recycle: int = Field(default=3600, ge=60)

    # ── Environment Fallback ──────────────────────────────────────────────
    # Used only when no registry document is found AND db_host is set
    db_host: Optional[str] = Field(default=None)
    db_port: int = Field(default=5432, ge=1, le=65535)
    db_name: Optional[str] = Field(default=None)
    db_user: Optional[str] = Field(default=None)
    db_pass: Optional[str] = Field(default=None)
    db_sslmode: str = Field(default="require")

    # ── Sessions ──────────────────────────────────────────────────────────
    # Signed-cookie sessions (Starlette SessionMiddleware + itsdangerous)
    session_secret: str = Field(default=DEFAULT_SESSION_SECRET)
    session_cookie: str = Field(default="authgate_session")
    session_max_age: int = Field(default=14 * 24 * 3600, ge=60)
    session_same_site: str = Field(default="lax")
    session_https_only: bool = Field(default=False)

    # ── Password Hashing (Argon2id) ───────────────────────────────────────
    # Defaults follow argon2-cffi's RFC 9106 low-memory profile
    argon2_time_cost: int = Field(default=3, ge=1, le=20)
    argon2_memory_cost: int = Field(default=65536, ge=8)  # KiB
    argon2_parallelism: int = Field(default=4, ge=1, le=64)

    # ── HTTP ──────────────────────────────────────────────────────────────
    # What: Static document root (login/register pages, css, js, fonts)
    public_dir: str = Field(default="./public")
    login_page: str = Field(default="/login.html")
    docs_enabled: bool = Field(default=True)

    cors_origins: str = Field(default="http://localhost:8080")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8080, ge=1, le=65535)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("session_same_site")
    @classmethod
    def validate_same_site(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"lax", "strict", "none"}:
            raise ValueError(f"Invalid session_same_site '{v}'. Must be lax, strict or none")
        return lower

    # ── Credential Throttling ─────────────────────────────────────────────
    # What: Per-IP sliding window on POST /api/login and POST /api/register
    auth_rate_limit_attempts: int = Field(default=20, ge=1, le=10000)
    auth_rate_limit_window: int = Field(default=300, ge=1, le=86400)  # seconds

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def validate_required_for_production(self) -> None:
        """
        What:  Checks security-sensitive settings.
        When:  Called during app startup (lifespan); the caller logs the
               failure and keeps serving.
        """
        errors = []
        if not self.session_secret or self.session_secret == DEFAULT_SESSION_SECRET:
            errors.append(
                "SESSION_SECRET is not set. Session cookies are signed with a "
                "publicly known development key."
            )
        if len(self.session_secret) < 32:
            errors.append("SESSION_SECRET should be at least 32 characters long.")
        if not self.session_https_only:
            errors.append("SESSION_HTTPS_ONLY is disabled; session cookies can travel over plain HTTP.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


settings = Settings()
