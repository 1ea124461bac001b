from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "INITIATIVE_LEDGER_HOME"
APP_ENV_DB = "INITIATIVE_LEDGER_DB"


def app_home() -> Path:
    """
    User-writable home for the ledger.
    Override with INITIATIVE_LEDGER_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".initiative_ledger").resolve()


def config_dir() -> Path:
    d = app_home() / "config"
    d.mkdir(parents=True, exist_ok=True)
    return d


def data_dir() -> Path:
    d = app_home() / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


def db_path() -> Path:
    """
    Canonical DB path for the ledger.

    Resolution order:
    1. INITIATIVE_LEDGER_DB env var (explicit override)
    2. ~/.initiative_ledger/data/initiative_ledger.db (default)
    """
    if os.environ.get(APP_ENV_DB):
        return Path(os.environ[APP_ENV_DB]).expanduser().resolve()
    return data_dir() / "initiative_ledger.db"
