"""
Centralized configuration for the initiative ledger.

Deployment-specific values live here. Environment variables override the
defaults; an optional ``ledger.yaml`` in the config dir overrides the
tunables in ``Settings``.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path

import yaml

from initiative_ledger import paths

logger = logging.getLogger(__name__)

# ============================================================
# Logging
# ============================================================

LOG_LEVEL: str = os.environ.get("INITIATIVE_LEDGER_LOG_LEVEL", "INFO")
"""Root log level applied by observability.configure_logging()."""

_log_json_raw = os.environ.get("INITIATIVE_LEDGER_LOG_JSON", "").strip().lower()
LOG_JSON: bool | None = {"1": True, "true": True, "0": False, "false": False}.get(_log_json_raw)
"""Force JSON (True) or human (False) log output. None = auto-detect from TTY."""

# ============================================================
# Ledger tunables
# ============================================================

CONFIG_FILENAME = "ledger.yaml"

DEFAULT_LIST_LIMIT = 200
"""Window for newest-first feeds (initiatives, opportunities, attestations)."""

DEFAULT_MILESTONE_LIMIT = 500


@dataclass(frozen=True)
class Settings:
    """Runtime settings shared by every component bound to one Database."""

    db_path: str | None = None
    busy_timeout_seconds: float = 30.0
    list_limit: int = DEFAULT_LIST_LIMIT
    milestone_limit: int = DEFAULT_MILESTONE_LIMIT
    cascade_fill_on_update: bool = False

    @classmethod
    def load(cls, config_file: str | Path | None = None, **overrides) -> "Settings":
        """
        Build settings from defaults, then ledger.yaml, then explicit overrides.

        A missing config file is not an error. Unknown YAML keys are logged
        and ignored.
        """
        settings = cls()
        path = Path(config_file) if config_file else paths.config_dir() / CONFIG_FILENAME
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
            settings = settings.merge(raw, source=str(path))
        return settings.merge(overrides, source="overrides")

    def merge(self, values: dict, source: str = "") -> "Settings":
        known = {f.name for f in fields(self)}
        accepted = {}
        for key, value in values.items():
            if key not in known:
                logger.warning("Ignoring unknown setting %s from %s", key, source)
                continue
            if value is not None:
                accepted[key] = value
        return replace(self, **accepted) if accepted else self

    def resolved_db_path(self) -> str:
        return self.db_path or str(paths.db_path())
