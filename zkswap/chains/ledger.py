"""
Ledger network (zkSync v1) JSON-RPC client for zkswap.

Provides the ledger-side interface the swap engine consumes:
- Account state (committed balances, nonce, assigned id)
- Fee quotes per transaction kind and token
- Token symbol resolution
- Single and atomic batch submission
- Receipt polling (commit / full verification)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..core import SYNC_TX_PREFIX

log = logging.getLogger(__name__)


# RPC endpoints
LEDGER_ENDPOINTS = {
    "localhost": "http://127.0.0.1:3030",
    "rinkeby": "https://rinkeby-api.zksync.io/jsrpc",
    "mainnet": "https://api.zksync.io/jsrpc",
}


class LedgerRPCError(RuntimeError):
    """Ledger RPC transport or application error."""


@dataclass
class LedgerConfig:
    """Ledger network configuration."""
    network: str = "localhost"
    url: str = ""
    timeout: float = 15.0        # seconds per RPC call
    poll_interval: float = 1.0   # seconds between receipt polls


@dataclass
class AccountState:
    """Committed state of a ledger account."""
    address: str
    id: Optional[int] = None
    nonce: int = 0
    pubkey_hash: Optional[str] = None
    balances: Dict[str, int] = field(default_factory=dict)

    def balance(self, token: str) -> int:
        return self.balances.get(token, 0)

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "AccountState":
        committed = data.get("committed") or {}
        pk_hash = committed.get("pubKeyHash")
        if pk_hash == "sync:" + "0" * 40:
            pk_hash = None
        return cls(
            address=data["address"],
            id=data.get("id"),
            nonce=int(committed.get("nonce", 0)),
            pubkey_hash=pk_hash,
            balances={k: int(v) for k, v in (committed.get("balances") or {}).items()},
        )


@dataclass
class TxReceipt:
    """Execution status of a ledger transaction."""
    tx_hash: str
    executed: bool = False
    success: Optional[bool] = None
    fail_reason: Optional[str] = None
    block_number: Optional[int] = None
    committed: bool = False
    verified: bool = False

    def reached(self, action: str) -> bool:
        """True once the transaction is final for the given confirmation level."""
        if not self.executed:
            return False
        if self.success is False:
            return True
        if action == "VERIFY":
            return self.verified
        return self.committed

    @classmethod
    def from_rpc(cls, tx_hash: str, data: Dict[str, Any]) -> "TxReceipt":
        block = data.get("block") or {}
        return cls(
            tx_hash=tx_hash,
            executed=bool(data.get("executed")),
            success=data.get("success"),
            fail_reason=data.get("failReason"),
            block_number=block.get("blockNumber"),
            committed=bool(block.get("committed")),
            verified=bool(block.get("verified")),
        )


class LedgerClient:
    """
    Async JSON-RPC client for the ledger network.

    Usage:
        async with LedgerClient(LedgerConfig(network="rinkeby")) as ledger:
            state = await ledger.get_state(address)
    """

    def __init__(self, config: LedgerConfig = None, http: httpx.AsyncClient = None):
        self.config = config or LedgerConfig()
        self.url = self.config.url or LEDGER_ENDPOINTS.get(self.config.network, "")
        self._http = http
        self._tokens: Optional[Dict[str, Dict[str, Any]]] = None
        self._contracts: Optional[Dict[str, str]] = None
        self._request_id = 0

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self.config.timeout)
        return self._http

    async def aclose(self):
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _call_rpc(self, method: str, params: List = None) -> Any:
        """Make JSON-RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": self._request_id,
        }

        try:
            response = await self.http.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            raise LedgerRPCError(f"RPC timeout: {method}")
        except httpx.HTTPError as e:
            raise LedgerRPCError(f"RPC call failed: {method}: {e}")
        except ValueError as e:
            raise LedgerRPCError(f"Invalid JSON response: {e}")

        if data.get("error"):
            raise LedgerRPCError(f"RPC error: {data['error']}")

        return data.get("result")

    # =========================================================================
    # Accounts and fees
    # =========================================================================

    async def get_state(self, address: str) -> AccountState:
        """Get committed account state."""
        result = await self._call_rpc("account_info", [address])
        return AccountState.from_rpc(result)

    async def get_tx_fee(self, tx_type: Any, address: str, token: str) -> int:
        """Get total fee for a transaction kind paid in `token`."""
        result = await self._call_rpc("get_tx_fee", [tx_type, address, token])
        return int(result["totalFee"])

    # =========================================================================
    # Tokens and contracts
    # =========================================================================

    async def tokens(self) -> Dict[str, Dict[str, Any]]:
        """Token set keyed by symbol (cached)."""
        if self._tokens is None:
            self._tokens = await self._call_rpc("tokens")
        return self._tokens

    async def _token(self, token: str) -> Dict[str, Any]:
        tokens = await self.tokens()
        if token in tokens:
            return tokens[token]
        for info in tokens.values():
            if info.get("address", "").lower() == token.lower():
                return info
        raise ValueError(f"Unknown token: {token}")

    async def resolve_token_id(self, token: str) -> int:
        return int((await self._token(token))["id"])

    async def resolve_token_address(self, token: str) -> str:
        return (await self._token(token))["address"]

    async def contract_address(self) -> Dict[str, str]:
        """Ledger contracts on the base chain (mainContract, govContract)."""
        if self._contracts is None:
            self._contracts = await self._call_rpc("contract_address")
        return self._contracts

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit_tx(self, tx: Dict[str, Any], eth_signature: Dict[str, str] = None) -> str:
        """Submit a single signed transaction. Returns its hash."""
        tx_hash = await self._call_rpc("tx_submit", [tx, eth_signature, False])
        log.info(f"Ledger tx submitted: {tx['type']} nonce={tx['nonce']} hash={tx_hash}")
        return tx_hash

    async def submit_batch(self, txs: List[Dict[str, Any]]) -> List[str]:
        """Submit signed transactions as an atomic batch. Returns their hashes."""
        batch = [{"tx": tx, "signature": None} for tx in txs]
        hashes = await self._call_rpc("submit_txs_batch", [batch, []])
        log.info(f"Ledger batch submitted: {len(txs)} txs, hashes={hashes}")
        return hashes

    # =========================================================================
    # Receipts
    # =========================================================================

    async def get_tx_receipt(self, tx_hash: str) -> TxReceipt:
        result = await self._call_rpc("tx_info", [tx_hash])
        return TxReceipt.from_rpc(tx_hash, result or {})

    async def notify_transaction(self, tx_hash: str, action: str = "COMMIT",
                                 timeout: float = None) -> TxReceipt:
        """
        Wait until a transaction reaches the given confirmation level.

        Args:
            tx_hash: Ledger transaction hash ("sync-tx:..." or "0x...")
            action: "COMMIT" or "VERIFY"
            timeout: Optional limit in seconds (raises asyncio.TimeoutError)

        Returns:
            TxReceipt once executed (successfully or not) at that level
        """
        if tx_hash.startswith("0x"):
            tx_hash = SYNC_TX_PREFIX + tx_hash[2:]
        deadline = time.monotonic() + timeout if timeout is not None else None

        while True:
            receipt = await self.get_tx_receipt(tx_hash)
            if receipt.reached(action):
                return receipt
            if deadline is not None and time.monotonic() >= deadline:
                raise asyncio.TimeoutError(f"Timed out waiting for {tx_hash}")
            await asyncio.sleep(self.config.poll_interval)
