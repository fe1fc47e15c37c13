"""Environment-variable-based configuration."""

import os
from pathlib import Path


def get_db_path() -> Path:
    """Return the L1 database file path from KB_DB_PATH."""
    raw = os.environ.get("KB_DB_PATH", "~/.local/share/compound_kb/knowledge.db")
    return Path(raw).expanduser()


def get_repo_path() -> Path:
    """Return the L2 repository working copy path from KB_REPO_PATH."""
    raw = os.environ.get("KB_REPO_PATH", "~/compound-knowledge")
    return Path(raw).expanduser()


def get_repo_url() -> str | None:
    """Return the L2 remote URL from KB_REPO_URL, or None for a local-only repository."""
    return os.environ.get("KB_REPO_URL", "").strip() or None


def is_auto_sync() -> bool:
    """Return True if KB_AUTO_SYNC is set to TRUE."""
    return os.environ.get("KB_AUTO_SYNC", "").upper() == "TRUE"


def get_git_timeout() -> float:
    """Return the per-command git timeout in seconds from KB_GIT_TIMEOUT."""
    return float(os.environ.get("KB_GIT_TIMEOUT", "30.0"))


def get_lock_stale_seconds() -> float:
    """Return the repository lock staleness timeout from KB_LOCK_STALE_SECONDS."""
    return float(os.environ.get("KB_LOCK_STALE_SECONDS", "10.0"))


def get_lock_max_attempts() -> int:
    """Return the repository lock retry budget from KB_LOCK_MAX_ATTEMPTS."""
    return int(os.environ.get("KB_LOCK_MAX_ATTEMPTS", "50"))


def get_git_author() -> tuple[str, str]:
    """Return the fallback commit identity from KB_GIT_AUTHOR_NAME / KB_GIT_AUTHOR_EMAIL.

    Only used when git itself has no user.email configured.
    """
    name = os.environ.get("KB_GIT_AUTHOR_NAME", "compound-kb")
    email = os.environ.get("KB_GIT_AUTHOR_EMAIL", "compound-kb@localhost")
    return name, email


def get_log_level() -> str:
    """Return the logging level from KB_LOG_LEVEL."""
    return os.environ.get("KB_LOG_LEVEL", "WARNING")
