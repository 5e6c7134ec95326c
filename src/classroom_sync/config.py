"""Sync configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_SCOPE = "global"


class SyncConfig(BaseSettings):
    """Runtime settings for the sync client and the backend server.

    Each field maps to the upper-case environment variable of the same name
    (BACKEND_URL, STATE_DIR, ...). A .env file in the working directory is
    read too.
    """

    # Classroom settings (browser-only, the student view has no usable API)
    classroom_url: str = Field(
        default="https://classroom.google.com",
        description="Google Classroom base URL",
    )
    classroom_account: str = Field(
        default="0",
        description="Account index used in /u/<n>/ URLs",
    )

    # Backend settings
    backend_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the sync backend exposing /sync",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every backend call",
    )
    default_scope: str = Field(
        default=DEFAULT_SCOPE,
        description="Snapshot partition used when no scope is given",
    )

    # Paths
    state_dir: str = Field(
        default="data/state",
        description="Directory for browser session state and crawl progress",
    )
    snapshot_dir: str = Field(
        default="data/snapshots",
        description="Directory for per-scope snapshots (server side)",
    )

    # Browser session
    max_session_age_hours: int = Field(
        default=24 * 7,
        description="Maximum age of the saved browser session before signing in again",
    )

    # Page readiness
    navigation_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single page navigation",
    )
    page_ready_timeout_seconds: float = Field(
        default=10.0,
        description="Hard timeout for page readiness polling",
    )
    page_poll_interval_seconds: float = Field(
        default=0.2,
        description="Interval between page readiness checks",
    )
    load_more_max_clicks: int = Field(
        default=50,
        description="Upper bound on 'Load more' expansions per listing",
    )

    # Server
    server_host: str = Field(default="127.0.0.1", description="Sync server bind host")
    server_port: int = Field(default=3000, description="Sync server bind port")

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def home_url(self) -> str:
        return f"{self.classroom_url.rstrip('/')}/u/{self.classroom_account}/"


# Built on first use, shared by the whole process
_config: SyncConfig | None = None


def get_config() -> SyncConfig:
    global _config
    if _config is None:
        _config = SyncConfig()
    return _config
