"""
zkswap - Trust-minimized atomic swaps on a layer-2 ledger

A client and a provider swap two tokens through a jointly controlled escrow
account. Five transactions are signed with a two-party threshold signature
before anyone deposits; their nonces and validity windows make the swap
either complete or cancel, never both. If the ledger halts, the escrow can
be redeployed on the base chain and each party withdraws its side.

Usage:
    from zkswap import SwapClient, SwapProvider, SwapTerms, TokenAmount

    offer = await provider.prepare_swap(terms, client.public_key, client.address)
    commitments = await client.prepare_swap(terms, offer.public_key, offer.address, offer.precommitments)
    signatures = await provider.sign_swap(commitments)
    shares = await client.sign_swap(signatures)
    await client.deposit_funds()
    await provider.check_swap(shares)
    await provider.finalize_swap()
"""

from .core import (
    SwapState,
    WithdrawMode,
    DepositSource,
    Role,
    TokenAmount,
    RecoveryParams,
    SwapTerms,
    SwapError,
    InvalidStateError,
    TimingViolationError,
    ProtocolMismatchError,
    LedgerPreconditionError,
)

from .chains.ledger import LedgerClient, LedgerConfig
from .chains.ethereum import EthereumClient, EthereumConfig
from .crypto.musig import Ed25519Musig, SignatureScheme
from .escrow.create2 import derive_escrow_account, recovery_params, rescue_constructor_args
from .escrow.rescue import EscrowRescuer

from .swap.party import SwapConfig, PartyKeys, SwapSession, WaitResult, WaitStatus
from .swap.client import SwapClient
from .swap.provider import SwapProvider
from .swap.remote import RemoteProvider

__version__ = "0.1.0"
__all__ = [
    # Core types
    "SwapState",
    "WithdrawMode",
    "DepositSource",
    "Role",
    "TokenAmount",
    "RecoveryParams",
    "SwapTerms",
    # Errors
    "SwapError",
    "InvalidStateError",
    "TimingViolationError",
    "ProtocolMismatchError",
    "LedgerPreconditionError",
    # Clients
    "LedgerClient",
    "LedgerConfig",
    "EthereumClient",
    "EthereumConfig",
    # Signatures
    "Ed25519Musig",
    "SignatureScheme",
    # Escrow
    "derive_escrow_account",
    "recovery_params",
    "rescue_constructor_args",
    "EscrowRescuer",
    # Swap
    "SwapConfig",
    "PartyKeys",
    "SwapSession",
    "WaitResult",
    "WaitStatus",
    "SwapClient",
    "SwapProvider",
    "RemoteProvider",
]
