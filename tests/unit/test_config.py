"""Tests for bill_reconciler.config."""

from __future__ import annotations

import pytest

from bill_reconciler.config import (
    ImapConfig,
    get_anthropic_api_key,
    get_batch_timeout,
    get_bill_concurrency,
    get_database_url,
    get_exclusive_matching,
    get_imap_config,
    get_llm_model,
    get_statement_concurrency,
)


class TestGetImapConfig:
    """Tests for get_imap_config()."""

    def test_valid_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
        monkeypatch.setenv("IMAP_PASSWORD", "pass123")  # pragma: allowlist secret
        monkeypatch.delenv("IMAP_PORT", raising=False)
        monkeypatch.delenv("IMAP_FOLDER", raising=False)

        config = get_imap_config()

        assert config.host == "mail.example.com"
        assert config.username == "user@example.com"
        assert config.password == "pass123"  # pragma: allowlist secret
        assert config.port == 993
        assert config.folder == "INBOX"

    def test_custom_port_and_folder(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
        monkeypatch.setenv("IMAP_PASSWORD", "pass123")  # pragma: allowlist secret
        monkeypatch.setenv("IMAP_PORT", "143")
        monkeypatch.setenv("IMAP_FOLDER", "Bills")

        config = get_imap_config()

        assert config.port == 143
        assert config.folder == "Bills"

    def test_missing_all_required_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("IMAP_HOST", raising=False)
        monkeypatch.delenv("IMAP_USERNAME", raising=False)
        monkeypatch.delenv("IMAP_PASSWORD", raising=False)

        with pytest.raises(
            ValueError, match=r"IMAP_HOST.*IMAP_USERNAME.*IMAP_PASSWORD"
        ):
            get_imap_config()

    def test_missing_password_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("IMAP_HOST", "mail.example.com")
        monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
        monkeypatch.delenv("IMAP_PASSWORD", raising=False)

        with pytest.raises(ValueError, match="IMAP_PASSWORD"):
            get_imap_config()

    def test_config_is_frozen(self) -> None:
        config = ImapConfig(
            host="mail.example.com",
            username="user@example.com",
            password="pass",  # pragma: allowlist secret
        )
        with pytest.raises(AttributeError):
            config.host = "other.example.com"  # type: ignore[misc]


class TestSecretsAndModel:
    """Tests for API key, database URL and model settings."""

    def test_api_key_present(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key")
        assert get_anthropic_api_key() == "sk-ant-test-key"

    def test_api_key_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            get_anthropic_api_key()

    def test_database_url_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_database_url()

    def test_default_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("LLM_MODEL", raising=False)
        assert get_llm_model() == "claude-haiku-4-5-20251001"

    def test_custom_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LLM_MODEL", "claude-sonnet-4-20250514")
        assert get_llm_model() == "claude-sonnet-4-20250514"


class TestBatchSettings:
    """Tests for concurrency, timeout and matching settings."""

    def test_concurrency_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BILL_CONCURRENCY", raising=False)
        monkeypatch.delenv("STATEMENT_CONCURRENCY", raising=False)
        assert get_bill_concurrency() == 5
        assert get_statement_concurrency() == 3

    def test_concurrency_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BILL_CONCURRENCY", "8")
        assert get_bill_concurrency() == 8

    @pytest.mark.parametrize("value", ["0", "-2"])
    def test_non_positive_concurrency_rejected(
        self, monkeypatch: pytest.MonkeyPatch, value: str
    ) -> None:
        monkeypatch.setenv("STATEMENT_CONCURRENCY", value)
        with pytest.raises(ValueError, match="positive"):
            get_statement_concurrency()

    def test_non_integer_concurrency_rejected(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("BILL_CONCURRENCY", "many")
        with pytest.raises(ValueError, match="integer"):
            get_bill_concurrency()

    def test_timeout_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("BATCH_TIMEOUT", raising=False)
        assert get_batch_timeout() is None

    def test_timeout_parsed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BATCH_TIMEOUT", "12.5")
        assert get_batch_timeout() == 12.5

    def test_timeout_must_be_positive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BATCH_TIMEOUT", "0")
        with pytest.raises(ValueError, match="BATCH_TIMEOUT"):
            get_batch_timeout()

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("true", True), ("1", True), ("YES", True), ("false", False), ("", False)],
    )
    def test_exclusive_matching(
        self, monkeypatch: pytest.MonkeyPatch, value: str, expected: bool
    ) -> None:
        monkeypatch.setenv("MATCH_EXCLUSIVE_BILLS", value)
        assert get_exclusive_matching() is expected
