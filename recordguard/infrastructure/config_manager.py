"""Configuration Manager for database credentials.

Loads the patient store connection settings from the environment (RG_*
variables, optionally via a .env file) or from a JSON file. Credentials are
held as SecretStr so they never appear in logs, reprs or error messages.

Security Impact:
    - Passwords and connection strings are SecretStr
    - Configuration is validated before any adapter is built
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, quote_plus, unquote, urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

logger = logging.getLogger(__name__)

SUPPORTED_DB_TYPES = ("duckdb", "postgresql")

ENV_PREFIX = "RG_"


class DatabaseConfig(BaseModel):
    """Patient store connection settings.

    Parameters:
        db_type: duckdb or postgresql
        db_path: DuckDB file path (None or ':memory:' for in-memory)
        host, port, database, username: PostgreSQL connection fields
        password: PostgreSQL password (secret)
        connection_string: Full postgresql:// URL (secret); takes precedence
            over the individual fields
        ssl_mode: PostgreSQL sslmode (require, prefer, disable)
        pool_min, pool_max: PostgreSQL connection pool bounds
        connect_timeout: Seconds to wait for a PostgreSQL connection
    """

    db_type: str = Field("duckdb", description="Database type (duckdb, postgresql)")
    db_path: Optional[str] = Field(None, description="Path to DuckDB database file")
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    connection_string: Optional[SecretStr] = None
    ssl_mode: Optional[str] = None
    pool_min: int = Field(default=1, ge=1)
    pool_max: int = Field(default=5, ge=1)
    connect_timeout: int = Field(default=10, ge=1)

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        if v.lower() not in SUPPORTED_DB_TYPES:
            raise ValueError(f"Unsupported database type: {v}. Supported: {list(SUPPORTED_DB_TYPES)}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Check the parent directory of a DuckDB file exists."""
        if v is None or v == ":memory:":
            return v
        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")
        return str(db_path_obj)

    @staticmethod
    def _parse_postgresql_connection_string(conn_str: str) -> Dict[str, Any]:
        """Split a postgresql:// (or postgres://) URL into its components."""
        parsed = urlparse(conn_str)
        if parsed.scheme not in ("postgresql", "postgres"):
            raise ValueError(f"Unsupported connection string scheme: {parsed.scheme}")

        result: Dict[str, Any] = {
            "host": parsed.hostname,
            "port": parsed.port,
            "database": parsed.path.lstrip("/") if parsed.path else None,
            "username": unquote(parsed.username) if parsed.username else None,
            "password": unquote(parsed.password) if parsed.password else None,
        }
        query_params = parse_qs(parsed.query)
        if "sslmode" in query_params:
            result["ssl_mode"] = query_params["sslmode"][0]
        return result

    @model_validator(mode="after")
    def sync_connection_string_and_fields(self) -> "DatabaseConfig":
        """Keep the connection string and the individual fields consistent.

        A connection string always wins: its components override the fields.
        Without one, it is built from host and database when both are set.
        """
        if self.db_type != "postgresql":
            return self

        if self.connection_string:
            try:
                parsed = self._parse_postgresql_connection_string(self.connection_string.get_secret_value())
            except ValueError as e:
                logger.warning(f"Failed to parse connection string, using as-is: {e}")
                return self
            for key in ("host", "port", "database", "username", "ssl_mode"):
                if parsed.get(key):
                    setattr(self, key, parsed[key])
            if parsed.get("password"):
                self.password = SecretStr(parsed["password"])
        elif self.host and self.database:
            self.connection_string = SecretStr(self._build_url())
        return self

    def _build_url(self) -> str:
        password_part = ""
        if self.password:
            password_part = f":{quote_plus(self.password.get_secret_value())}"
        username_part = quote_plus(self.username) if self.username else ""
        ssl_part = f"?sslmode={self.ssl_mode}" if self.ssl_mode else ""
        return (
            f"postgresql://{username_part}{password_part}@{self.host}:"
            f"{self.port or 5432}/{self.database}{ssl_part}"
        )

    def get_connection_string(self) -> str:
        """Return the DuckDB path or the PostgreSQL URL.

        Raises:
            ValueError: If PostgreSQL is configured without host and database
        """
        if self.db_type == "duckdb":
            return self.db_path or ":memory:"
        if self.connection_string:
            return self.connection_string.get_secret_value()
        if not (self.host and self.database):
            raise ValueError("postgresql requires host and database")
        return self._build_url()


class ConfigManager:
    """Loads configuration from the environment or a JSON file.

    Example Usage:
        ```python
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()

        config = ConfigManager.from_file("config.json")
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> "ConfigManager":
        """Load configuration from RG_* environment variables.

        Environment Variables:
            - RG_DB_TYPE: duckdb (default) or postgresql
            - RG_DB_PATH: DuckDB file path
            - RG_DB_HOST, RG_DB_PORT, RG_DB_NAME, RG_DB_USER: PostgreSQL fields
            - RG_DB_PASSWORD: PostgreSQL password (secret)
            - RG_DB_CONNECTION_STRING: Full PostgreSQL URL (secret)
            - RG_DB_SSL_MODE: PostgreSQL sslmode

        Parameters:
            env_file: .env file to load first (defaults to .env in the
                working directory, when present)
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        def env(name: str) -> Optional[str]:
            return os.getenv(f"{ENV_PREFIX}{name}") or None

        port = env("DB_PORT")
        config_data = {
            "database": {
                "db_type": env("DB_TYPE") or "duckdb",
                "db_path": env("DB_PATH"),
                "host": env("DB_HOST"),
                "port": int(port) if port else None,
                "database": env("DB_NAME"),
                "username": env("DB_USER"),
                "password": env("DB_PASSWORD"),
                "connection_string": env("DB_CONNECTION_STRING"),
                "ssl_mode": env("DB_SSL_MODE"),
            }
        }
        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> "ConfigManager":
        """Load configuration from a JSON file with a "database" section.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not valid JSON
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_file.stat().st_mode & 0o077 != 0:
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 for credential files."
            )

        try:
            with open(config_file, "r") as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")

        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        if self._database_config is None:
            db_config_data = {
                k: v for k, v in self._config_data.get("database", {}).items() if v is not None
            }
            self._database_config = DatabaseConfig(**db_config_data)
        return self._database_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key (e.g. "database.host")."""
        value: Any = self._config_data
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
        return value if value is not None else default


def get_database_config() -> DatabaseConfig:
    """Load the database configuration from the environment.

    Defaults to an in-memory DuckDB database when nothing is configured.
    """
    return ConfigManager.from_environment().get_database_config()
