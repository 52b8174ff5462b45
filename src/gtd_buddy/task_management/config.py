"""Configuration constants and process settings for the GTD tool server."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .exceptions import ConfigurationError

# MCP Server Configuration
DEFAULT_MCP_SERVER_NAME = "gtd-buddy"
DEFAULT_MCP_SERVER_VERSION = "1.0.0"
DEFAULT_MCP_HOST = "0.0.0.0"
DEFAULT_MCP_PORT = 3001
DEFAULT_MCP_PATH = "/mcp"
SESSION_ID_HEADER = "mcp-session-id"
MAX_SESSION_ID_LENGTH = 128
SESSION_CLOSE_TIMEOUT = 5.0  # seconds
SESSION_START_TIMEOUT = 10.0  # seconds
DEFAULT_SESSION_IDLE_TIMEOUT = 1800.0  # seconds
SESSION_SWEEP_INTERVAL = 60.0  # seconds

# Storage Configuration
DEFAULT_STORE_TIMEOUT = 10.0  # seconds
DEFAULT_WAL_MODE = True
TASKS_COLLECTION = "tasks"
CONTEXTS_COLLECTION = "contexts"

# Database Schema Version
SCHEMA_VERSION = 1

# Tool limits
DEFAULT_LIST_LIMIT = 50
DEFAULT_QUICK_ACTIONS_LIMIT = 20
DEFAULT_SEARCH_LIMIT = 20
MAX_LIST_LIMIT = 100
DEFAULT_SEARCH_SCAN_LIMIT = 200
INBOX_ALERT_THRESHOLD = 10
WEEKLY_REVIEW_STALE_DAYS = 7

# Field limits
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_CONTEXT_NAME_LENGTH = 100
MAX_CONTEXT_DESCRIPTION_LENGTH = 500
MIN_ESTIMATED_MINUTES = 1
MAX_ESTIMATED_MINUTES = 480
MIN_ENERGY_LEVEL = 1
MAX_ENERGY_LEVEL = 5

# Environment variables
ENV_USER_ID = "GTD_USER_ID"
ENV_DATABASE_PATH = "GTD_DATABASE_PATH"
ENV_API_TOKEN = "GTD_API_TOKEN"
ENV_TIMEZONE = "GTD_TIMEZONE"
ENV_STORE_TIMEOUT = "GTD_STORE_TIMEOUT"
ENV_SESSION_IDLE_TIMEOUT = "GTD_SESSION_IDLE_TIMEOUT"
ENV_HOST = "HOST"
ENV_PORT = "PORT"


@dataclass(frozen=True)
class ServerConfig:
    """Process-wide settings, loaded once at startup."""

    user_id: str
    database_path: str
    api_token: str | None = None
    host: str = DEFAULT_MCP_HOST
    port: int = DEFAULT_MCP_PORT
    timezone: ZoneInfo | None = None
    store_timeout: float = DEFAULT_STORE_TIMEOUT
    session_idle_timeout: float = DEFAULT_SESSION_IDLE_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ServerConfig":
        """
        Build configuration from environment variables.

        When no mapping is given, a ``.env`` file is loaded into the process
        environment first.

        Args:
            environ: Mapping to read instead of ``os.environ`` (for testing)

        Returns:
            ServerConfig instance

        Raises:
            ConfigurationError: If a required variable is missing or invalid
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        user_id = environ.get(ENV_USER_ID, "").strip()
        if not user_id:
            raise ConfigurationError(
                f"{ENV_USER_ID} environment variable is required "
                "(the user whose tasks this server manages)"
            )

        database_path = environ.get(ENV_DATABASE_PATH, "").strip()
        if not database_path:
            raise ConfigurationError(
                f"{ENV_DATABASE_PATH} environment variable is required "
                "(path to the task store database)"
            )
        if database_path != ":memory:":
            database_path = os.path.expanduser(database_path)

        port_value = environ.get(ENV_PORT, str(DEFAULT_MCP_PORT))
        try:
            port = int(port_value)
        except ValueError as e:
            raise ConfigurationError(f"{ENV_PORT} must be an integer, got {port_value!r}") from e

        timeout_value = environ.get(ENV_STORE_TIMEOUT, str(DEFAULT_STORE_TIMEOUT))
        try:
            store_timeout = float(timeout_value)
        except ValueError as e:
            raise ConfigurationError(
                f"{ENV_STORE_TIMEOUT} must be a number of seconds, got {timeout_value!r}"
            ) from e
        if store_timeout <= 0:
            raise ConfigurationError(f"{ENV_STORE_TIMEOUT} must be positive")

        idle_value = environ.get(ENV_SESSION_IDLE_TIMEOUT, str(DEFAULT_SESSION_IDLE_TIMEOUT))
        try:
            session_idle_timeout = float(idle_value)
        except ValueError as e:
            raise ConfigurationError(
                f"{ENV_SESSION_IDLE_TIMEOUT} must be a number of seconds, got {idle_value!r}"
            ) from e
        if session_idle_timeout <= 0:
            raise ConfigurationError(f"{ENV_SESSION_IDLE_TIMEOUT} must be positive")

        timezone = None
        timezone_name = environ.get(ENV_TIMEZONE, "").strip()
        if timezone_name:
            try:
                timezone = ZoneInfo(timezone_name)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ConfigurationError(
                    f"{ENV_TIMEZONE} is not a known timezone: {timezone_name!r}"
                ) from e

        return cls(
            user_id=user_id,
            database_path=database_path,
            api_token=environ.get(ENV_API_TOKEN) or None,
            host=environ.get(ENV_HOST, DEFAULT_MCP_HOST),
            port=port,
            timezone=timezone,
            store_timeout=store_timeout,
            session_idle_timeout=session_idle_timeout,
        )
