"""Tests for runtime settings and logging setup."""

from pathlib import Path

import pytest
import structlog

from covenant.config import DEFAULT_CONFIG_DIR, Settings
from covenant.observability import configure_logging


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings.from_env({})
        assert settings.config_dir == DEFAULT_CONFIG_DIR
        assert settings.data_dir is None
        assert settings.environment == "production"
        assert settings.ledger_chain_id == 11155111
        assert not settings.ledger_configured

    def test_reads_environment(self, tmp_path: Path) -> None:
        settings = Settings.from_env({
            "COVENANT_CONFIG_DIR": str(tmp_path / "cfg"),
            "COVENANT_DATA_DIR": str(tmp_path / "data"),
            "COVENANT_ENV": "development",
            "COVENANT_LOG_LEVEL": "debug",
            "COVENANT_LEDGER_RPC_URL": "http://localhost:8545",
            "COVENANT_LEDGER_PRIVATE_KEY": "0x" + "11" * 32,
            "COVENANT_LEDGER_CHAIN_ID": "1",
            "COVENANT_PUBLISH_BACKOFF_SECONDS": "2.5",
            "COVENANT_PUBLISH_BACKOFF_MAX_SECONDS": "60",
        })
        assert settings.config_dir == tmp_path / "cfg"
        assert settings.data_dir == tmp_path / "data"
        assert settings.log_level == "DEBUG"
        assert settings.ledger_configured
        assert settings.ledger_chain_id == 1
        assert settings.publish_backoff_seconds == 2.5
        assert settings.publish_backoff_max_seconds == 60.0

    def test_malformed_number(self) -> None:
        with pytest.raises(ValueError):
            Settings.from_env({"COVENANT_LEDGER_CHAIN_ID": "sepolia"})

    def test_default_config_dir_has_templates(self) -> None:
        assert (DEFAULT_CONFIG_DIR / "templates.json").exists()


class TestLogging:
    @pytest.mark.parametrize("environment", ["production", "development"])
    def test_configure_logging(self, environment: str, capsys) -> None:
        configure_logging(environment, level="INFO")
        structlog.get_logger("covenant.test").info("probe_event", key="value")
        err = capsys.readouterr().err
        assert "probe_event" in err
