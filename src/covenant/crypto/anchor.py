"""Ledger anchoring — publish audit events to Ethereum as an outside witness.

Anchoring embeds a hash of an audit event into a blockchain transaction,
creating a timestamped, publicly verifiable proof that the event existed
in that exact form at that moment.

This is NOT a smart contract. No code executes on-chain. The chain only
witnesses: a 0-ETH self-send whose data field carries the SHA-256 of the
event bytes. The transaction hash is the receipt.

The audit trail does not depend on this module's transport. Anything
with ``publish(event_bytes) -> receipt_id`` that raises PublishUnavailable
on transient failure can stand in for it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import structlog

from covenant.errors import PublishUnavailable

logger = structlog.get_logger(__name__)

SEPOLIA_CHAIN_ID = 11155111


class LedgerPublisher(Protocol):
    def publish(self, event_bytes: bytes) -> str:
        ...


@dataclass(frozen=True)
class AnchorRecord:
    """A record of a successful blockchain anchor."""
    sha256_hash: str
    tx_hash: str
    block_number: int
    chain_id: int


class EthereumLedgerPublisher:
    """Anchors event digests with a self-send transaction.

    Every failure on the way (connection, signing, send, confirmation
    timeout) surfaces as PublishUnavailable so the audit trail can retry.

    Args:
        rpc_url: Ethereum RPC endpoint URL.
        private_key: Hex-encoded private key of the funding account.
        chain_id: Network chain ID (default: 11155111 = Sepolia).
        gas: Gas limit for the transaction.
        gas_price_gwei: Gas price in gwei.
        timeout_seconds: How long to wait for one confirmation.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        chain_id: int = SEPOLIA_CHAIN_ID,
        gas: int = 30_000,
        gas_price_gwei: str = "2",
        timeout_seconds: float = 120.0,
    ) -> None:
        self._rpc_url = rpc_url
        self._private_key = private_key
        self._chain_id = chain_id
        self._gas = gas
        self._gas_price_gwei = gas_price_gwei
        self._timeout = timeout_seconds
        self._w3: Optional[Any] = None
        self.last_anchor: Optional[AnchorRecord] = None

    def publish(self, event_bytes: bytes) -> str:
        digest = hashlib.sha256(event_bytes).hexdigest()
        from web3.exceptions import Web3Exception

        try:
            record = self._anchor(digest)
        except (Web3Exception, OSError, ValueError) as exc:
            logger.warning("ledger_anchor_failed", digest=digest, error=str(exc))
            raise PublishUnavailable(f"{type(exc).__name__}: {exc}") from exc

        self.last_anchor = record
        logger.info(
            "ledger_anchor_confirmed",
            digest=digest,
            tx_hash=record.tx_hash,
            block_number=record.block_number,
        )
        return record.tx_hash

    def _connect(self) -> Any:
        if self._w3 is None:
            from web3 import HTTPProvider, Web3

            self._w3 = Web3(HTTPProvider(self._rpc_url))
        return self._w3

    def _anchor(self, digest: str) -> AnchorRecord:
        from eth_account import Account

        w3 = self._connect()
        acct = Account.from_key(self._private_key)

        nonce = w3.eth.get_transaction_count(acct.address)
        tx = {
            "to": acct.address,  # self-send, 0 ETH
            "value": 0,
            "gas": self._gas,
            "gasPrice": w3.to_wei(self._gas_price_gwei, "gwei"),
            "nonce": nonce,
            "chainId": self._chain_id,
            "data": bytes.fromhex(digest),
        }

        signed = acct.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug("ledger_anchor_sent", tx_hash=tx_hash.hex())

        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._timeout)

        return AnchorRecord(
            sha256_hash=digest,
            tx_hash=tx_hash.hex(),
            block_number=receipt.blockNumber,
            chain_id=self._chain_id,
        )
