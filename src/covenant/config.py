"""Runtime settings, read from the environment.

A ``.env`` file in the working directory is loaded first (python-dotenv),
without overriding variables already set. Every setting has a default so
the engine runs in memory with no configuration at all.

Variables:
    COVENANT_CONFIG_DIR                  directory holding templates.json
    COVENANT_DATA_DIR                    attestation store and audit log; unset = in memory
    COVENANT_ENV                         production | development
    COVENANT_LOG_LEVEL                   DEBUG, INFO, WARNING, ...
    COVENANT_LEDGER_RPC_URL              Ethereum RPC endpoint; unset = no publisher
    COVENANT_LEDGER_PRIVATE_KEY          hex key of the anchoring account
    COVENANT_LEDGER_CHAIN_ID             default 11155111 (Sepolia)
    COVENANT_PUBLISH_BACKOFF_SECONDS     first retry delay
    COVENANT_PUBLISH_BACKOFF_MAX_SECONDS retry delay cap
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from covenant.crypto.anchor import SEPOLIA_CHAIN_ID

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


@dataclass(frozen=True)
class Settings:
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Optional[Path] = None
    environment: str = "production"
    log_level: str = "INFO"
    ledger_rpc_url: Optional[str] = None
    ledger_private_key: Optional[str] = None
    ledger_chain_id: int = SEPOLIA_CHAIN_ID
    publish_backoff_seconds: float = 30.0
    publish_backoff_max_seconds: float = 3600.0

    @property
    def ledger_configured(self) -> bool:
        return bool(self.ledger_rpc_url and self.ledger_private_key)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> Settings:
        """Build settings from ``environ`` (default: os.environ after .env).

        Raises ValueError for malformed numeric settings.
        """
        if environ is None:
            load_dotenv(dotenv_path)
            environ = os.environ

        data_dir = environ.get("COVENANT_DATA_DIR")
        return cls(
            config_dir=Path(environ.get("COVENANT_CONFIG_DIR") or DEFAULT_CONFIG_DIR),
            data_dir=Path(data_dir) if data_dir else None,
            environment=environ.get("COVENANT_ENV", "production"),
            log_level=environ.get("COVENANT_LOG_LEVEL", "INFO").upper(),
            ledger_rpc_url=environ.get("COVENANT_LEDGER_RPC_URL") or None,
            ledger_private_key=environ.get("COVENANT_LEDGER_PRIVATE_KEY") or None,
            ledger_chain_id=int(environ.get("COVENANT_LEDGER_CHAIN_ID", SEPOLIA_CHAIN_ID)),
            publish_backoff_seconds=float(environ.get("COVENANT_PUBLISH_BACKOFF_SECONDS", 30.0)),
            publish_backoff_max_seconds=float(
                environ.get("COVENANT_PUBLISH_BACKOFF_MAX_SECONDS", 3600.0)
            ),
        )
