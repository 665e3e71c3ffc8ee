"""
Service settings.

Settings come from environment variables (``from_env``) or from a YAML
file (``from_yaml``):

```yaml
analytics:
  duckdb_path: /var/lib/analytics/events.duckdb
  sqlite_path: /var/lib/analytics/profiles.db
  log_level: DEBUG
  json_logs: false
```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .backends.duckdb import DuckDBConfig
from .backends.sqlite import SQLiteConfig
from .exceptions import ValidationError
from .logging_utils import configure_structured_logging

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class AnalyticsSettings:
    """Settings for the analytics query service."""

    duckdb: DuckDBConfig = field(default_factory=DuckDBConfig)
    sqlite: SQLiteConfig = field(default_factory=SQLiteConfig)
    log_level: str = "INFO"
    json_logs: bool = True

    @classmethod
    def from_env(cls) -> AnalyticsSettings:
        """Create settings from environment variables."""
        return cls(
            duckdb=DuckDBConfig.from_env(),
            sqlite=SQLiteConfig.from_env(),
            log_level=os.environ.get("SITE_ANALYTICS_LOG_LEVEL", "INFO").upper(),
            json_logs=_as_bool(os.environ.get("SITE_ANALYTICS_JSON_LOGS", "true")),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> AnalyticsSettings:
        """Load settings from the ``analytics`` section of a YAML file.

        Missing keys keep their defaults.

        Raises:
            ValidationError: If the file does not hold a mapping.
        """
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValidationError("settings", "top level must be a mapping", str(path))

        section = data.get("analytics", {}) or {}
        if not isinstance(section, dict):
            raise ValidationError("analytics", "must be a mapping", str(path))

        settings = cls()
        if "duckdb_path" in section:
            settings.duckdb = DuckDBConfig(db_path=section["duckdb_path"])
        if "sqlite_path" in section:
            settings.sqlite = SQLiteConfig(db_path=section["sqlite_path"])
        if "log_level" in section:
            settings.log_level = str(section["log_level"]).upper()
        if "json_logs" in section:
            settings.json_logs = _as_bool(section["json_logs"])
        return settings

    def configure_logging(self) -> logging.Logger:
        """Install the service's log handler on the ``site_analytics`` logger."""
        return configure_structured_logging(
            level=self.log_level,
            logger_name="site_analytics",
            json_output=self.json_logs,
        )
