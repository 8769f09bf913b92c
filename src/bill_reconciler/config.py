"""Configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ImapConfig:
    """IMAP connection configuration."""

    host: str
    username: str
    password: str
    port: int = 993
    folder: str = "INBOX"


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ValueError(msg)
    return url


def get_imap_config() -> ImapConfig:
    """Build IMAP configuration from environment variables.

    Required: IMAP_HOST, IMAP_USERNAME, IMAP_PASSWORD
    Optional: IMAP_PORT (default 993), IMAP_FOLDER (default INBOX)
    """
    host = os.environ.get("IMAP_HOST")
    username = os.environ.get("IMAP_USERNAME")
    password = os.environ.get("IMAP_PASSWORD")

    missing = []
    if not host:
        missing.append("IMAP_HOST")
    if not username:
        missing.append("IMAP_USERNAME")
    if not password:
        missing.append("IMAP_PASSWORD")

    if missing:
        msg = f"Required environment variables not set: {', '.join(missing)}"
        raise ValueError(msg)

    port = int(os.environ.get("IMAP_PORT", "993"))
    folder = os.environ.get("IMAP_FOLDER", "INBOX")

    return ImapConfig(
        host=host,  # type: ignore[arg-type]
        username=username,  # type: ignore[arg-type]
        password=password,  # type: ignore[arg-type]
        port=port,
        folder=folder,
    )


def get_anthropic_api_key() -> str:
    """Return the ANTHROPIC_API_KEY from the environment."""
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        msg = "ANTHROPIC_API_KEY environment variable is required"
        raise ValueError(msg)
    return key


def get_llm_model() -> str:
    """Return the LLM model identifier.

    Defaults to claude-haiku-4-5-20251001.
    """
    return os.environ.get("LLM_MODEL", "claude-haiku-4-5-20251001")


def get_bill_concurrency() -> int:
    """Return BILL_CONCURRENCY, the number of bill extractions in flight."""
    return _positive_int("BILL_CONCURRENCY", 5)


def get_statement_concurrency() -> int:
    """Return STATEMENT_CONCURRENCY, the number of statement extractions in flight."""
    return _positive_int("STATEMENT_CONCURRENCY", 3)


def get_batch_timeout() -> float | None:
    """Return BATCH_TIMEOUT in seconds, or None when unset."""
    raw = os.environ.get("BATCH_TIMEOUT")
    if not raw:
        return None
    timeout = float(raw)
    if timeout <= 0:
        msg = f"BATCH_TIMEOUT must be positive, got {raw}"
        raise ValueError(msg)
    return timeout


def get_exclusive_matching() -> bool:
    """Return whether a matched bill is retired from the matching pool.

    Controlled by MATCH_EXCLUSIVE_BILLS; off by default.
    """
    return os.environ.get("MATCH_EXCLUSIVE_BILLS", "").strip().lower() in _TRUE_VALUES


def _positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ValueError(msg) from None
    if value < 1:
        msg = f"{name} must be a positive integer, got {value}"
        raise ValueError(msg)
    return value
