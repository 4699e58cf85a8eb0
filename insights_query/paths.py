"""
Centralized path and config constants.

All modules that need the config file name, the cache location or the
environment-variable names should import from here.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import load_dotenv

# Load .env once at import time (before reading env vars that may be in the file)
load_dotenv()

# ---------------------------------------------------------------------------
# Config document
# ---------------------------------------------------------------------------

CONFIG_FILENAME = ".insights-config.json"
HOME_CONFIG_DIR = Path.home() / ".insights"
HOME_CONFIG_FILE = HOME_CONFIG_DIR / "config.json"
HOME_CONFIG_SINGLE_FILE = Path.home() / CONFIG_FILENAME

# ---------------------------------------------------------------------------
# Workspace-relative state
# ---------------------------------------------------------------------------

STATE_DIRNAME = ".insights-query"
CACHE_DIRNAME = "cache"

# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

ENV_WORKSPACE_PATH = "INSIGHTS_WORKSPACE_PATH"
ENV_CONFIG_PATH = "INSIGHTS_CONFIG"
ENV_PROFILE = "INSIGHTS_PROFILE"
ENV_ACCESS_TOKEN = "INSIGHTS_ACCESS_TOKEN"
ENV_PLACEHOLDER_POLICY = "INSIGHTS_PLACEHOLDER_POLICY"

APP_INSIGHTS_SCOPE = "https://api.applicationinsights.io/.default"
APP_INSIGHTS_API_URL = os.getenv("APP_INSIGHTS_API_URL", "https://api.applicationinsights.io/v1")
QUERY_TIMEOUT_SECONDS = float(os.getenv("INSIGHTS_QUERY_TIMEOUT", "60"))


def cache_root(workspace_path: str | Path) -> Path:
    """Return the directory holding every cache namespace of a workspace."""
    return Path(workspace_path) / STATE_DIRNAME / CACHE_DIRNAME


def cache_namespace(target: str) -> str:
    """Directory-safe name for a backend target (app id or cluster/database)."""
    slug = re.sub(r"[^A-Za-z0-9_.-]+", "_", target.strip()).strip("_.")
    return slug or "default"


def cache_dir_for(workspace_path: str | Path, target: str) -> Path:
    return cache_root(workspace_path) / cache_namespace(target)
