"""Application Settings.

Combines the database configuration from the configuration manager with the
integrity-pipeline options read from RG_* environment variables.
"""

import os
from typing import Optional

from recordguard.domain.codec import DEFAULT_MAX_ENCODED_LENGTH
from recordguard.domain.diagnostics import DEFAULT_EXCERPT_RADIUS
from recordguard.infrastructure.config_manager import DatabaseConfig, get_database_config

APP_NAME = "Record-Guard"


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from the environment.

    Attributes:
        log_level: RG_LOG_LEVEL (default INFO)
        json_logs: RG_JSON_LOGS, emit structured JSON logs (default false)
        reject_parse_failures: RG_REJECT_PARSE_FAILURES, the write policy
            for unparseable clinical strings (default true)
        max_encoded_length: RG_MAX_ENCODED_LENGTH, byte capacity of a
            clinical column (default 65535)
        excerpt_radius: RG_EXCERPT_RADIUS, diagnostic context per side (default 20)
        repair_workers: RG_REPAIR_WORKERS, concurrent repair writes (default 1)
        save_integrity_report: RG_SAVE_INTEGRITY_REPORT (default true)
        integrity_report_dir: RG_INTEGRITY_REPORT_DIR (default reports)
    """

    def __init__(self):
        self._db_config: Optional[DatabaseConfig] = None

        self.app_name = os.getenv("RG_APP_NAME", APP_NAME)
        self.log_level = os.getenv("RG_LOG_LEVEL", "INFO")
        self.json_logs = _env_flag("RG_JSON_LOGS", False)

        self.reject_parse_failures = _env_flag("RG_REJECT_PARSE_FAILURES", True)
        self.max_encoded_length = int(os.getenv("RG_MAX_ENCODED_LENGTH", str(DEFAULT_MAX_ENCODED_LENGTH)))
        self.excerpt_radius = int(os.getenv("RG_EXCERPT_RADIUS", str(DEFAULT_EXCERPT_RADIUS)))
        self.repair_workers = max(1, int(os.getenv("RG_REPAIR_WORKERS", "1")))

        self.save_integrity_report = _env_flag("RG_SAVE_INTEGRITY_REPORT", True)
        self.integrity_report_dir = os.getenv("RG_INTEGRITY_REPORT_DIR", "reports")

    @property
    def db_config(self) -> DatabaseConfig:
        """Database configuration, loaded on first access."""
        if self._db_config is None:
            self._db_config = get_database_config()
        return self._db_config

    def get_connection_string(self) -> str:
        return self.db_config.get_connection_string()


# Global settings instance
settings = Settings()
