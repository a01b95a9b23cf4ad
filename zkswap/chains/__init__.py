"""
Chain clients for zkswap.

- LedgerClient: layer-2 ledger JSON-RPC (accounts, fees, submission, receipts)
- EthereumClient: base chain (balances, deposits into the ledger, contract calls)
"""

from .ledger import LedgerClient, LedgerConfig, LedgerRPCError
from .ethereum import EthereumClient, EthereumConfig, BaseChainError
from .txs import LedgerTx, TxKind, TxSignature

__all__ = [
    "LedgerClient", "LedgerConfig", "LedgerRPCError",
    "EthereumClient", "EthereumConfig", "BaseChainError",
    "LedgerTx", "TxKind", "TxSignature",
]
