"""
Core types and interfaces for zkswap.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, TypeVar

T = TypeVar("T")


class SwapState(Enum):
    """Swap lifecycle states (per party)."""
    EMPTY = "empty"           # No swap bound
    PREPARED = "prepared"     # Terms bound, plan built, precommitments exchanged
    SIGNED = "signed"         # All 5 transactions signed and verified
    DEPOSITED = "deposited"   # Party's side amount is in the escrow account
    FINALIZED = "finalized"   # Terminal: completion or cancellation submitted


class WithdrawMode(Enum):
    """How the provider is paid out of the escrow account."""
    ON_LEDGER = "on_ledger"          # Transfer inside the ledger network
    TO_BASE_CHAIN = "to_base_chain"  # Withdraw to the provider's base-chain address


class Role(Enum):
    """Party roles.

    The value is the party's fixed position in the two-party signing protocol.
    """
    PROVIDER = 0
    CLIENT = 1

    @property
    def position(self) -> int:
        return self.value

    @property
    def payout_index(self) -> int:
        """Plan index of the transaction that pays this party on completion."""
        return PAY_BUYER if self is Role.CLIENT else PAY_SELLER

    @property
    def cancel_indices(self) -> List[int]:
        """Plan indices this party pushes when cancelling (besides key registration)."""
        if self is Role.CLIENT:
            return [REFUND]
        return [REFUND, NONCE_BURN]


class DepositSource(Enum):
    """Where deposited funds come from."""
    LEDGER = "ledger"          # Transfer from the party's ledger account
    BASE_CHAIN = "base_chain"  # Deposit through the ledger's base-chain contract


# =============================================================================
# Errors
# =============================================================================

class SwapError(Exception):
    """Base class for swap protocol failures."""


class InvalidStateError(SwapError):
    """Operation attempted outside its precondition. Nothing was changed."""


class TimingViolationError(InvalidStateError):
    """Operation attempted at the wrong time (e.g. cancel before the timeout)."""


class ProtocolMismatchError(SwapError):
    """Counterparty data failed combination or verification.

    Fatal for the current attempt: the signer's nonce state is spent, so the
    party must reset and restart the handshake.
    """


class LedgerPreconditionError(SwapError):
    """Ledger state does not allow the operation yet (unknown account, low balance)."""


# =============================================================================
# Swap terms
# =============================================================================

@dataclass(frozen=True)
class TokenAmount:
    """Token symbol and amount in the token's smallest unit."""
    token: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token, "amount": str(self.amount)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenAmount":
        return cls(token=data["token"], amount=int(data["amount"]))


@dataclass(frozen=True)
class RecoveryParams:
    """Deterministic-creation inputs shared by the escrow account and rescue contract.

    creator: deployer contract address on the base chain
    salt: 32-byte salt argument (hex)
    code_hash: keccak256 of the rescue contract init code (hex)
    """
    creator: str
    salt: str
    code_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {"creator": self.creator, "salt": self.salt, "code_hash": self.code_hash}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecoveryParams":
        return cls(creator=data["creator"], salt=data["salt"], code_hash=data["code_hash"])


@dataclass(frozen=True)
class SwapTerms:
    """Terms agreed by both parties. Must be identical on both sides."""
    sell: TokenAmount     # Client gives, provider receives
    buy: TokenAmount      # Provider gives, client receives
    timeout: int          # Unix seconds
    recovery: RecoveryParams
    withdraw_mode: WithdrawMode = WithdrawMode.ON_LEDGER

    def side(self, role: Role) -> TokenAmount:
        """Amount the given role puts into the escrow account."""
        return self.sell if role is Role.CLIENT else self.buy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sell": self.sell.to_dict(),
            "buy": self.buy.to_dict(),
            "timeout": self.timeout,
            "withdraw_mode": self.withdraw_mode.value,
            "recovery": self.recovery.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapTerms":
        return cls(
            sell=TokenAmount.from_dict(data["sell"]),
            buy=TokenAmount.from_dict(data["buy"]),
            timeout=int(data["timeout"]),
            withdraw_mode=WithdrawMode(data.get("withdraw_mode", WithdrawMode.ON_LEDGER.value)),
            recovery=RecoveryParams.from_dict(data["recovery"]),
        )


# =============================================================================
# Helpers
# =============================================================================

def transpose(matrix: Sequence[Sequence[T]]) -> List[List[T]]:
    """[[a0, a1, ...], [b0, b1, ...]] -> [[a0, b0], [a1, b1], ...]"""
    if not matrix:
        return []
    width = len(matrix[0])
    if any(len(row) != width for row in matrix):
        raise ValueError("Cannot transpose rows of different length")
    return [[row[i] for row in matrix] for i in range(width)]


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    if value.startswith("0x") or value.startswith("0X"):
        value = value[2:]
    return bytes.fromhex(value)


# =============================================================================
# Constants
# =============================================================================

# Position of each transaction in the swap plan
KEY_REGISTRATION = 0
PAY_BUYER = 1
PAY_SELLER = 2
REFUND = 3
NONCE_BURN = 4
TOTAL_TRANSACTIONS = 5

# Largest timestamp accepted by the ledger (u32 seconds)
MAX_TIMESTAMP = 4294967295

# Prefix of ledger transaction hashes
SYNC_TX_PREFIX = "sync-tx:"
