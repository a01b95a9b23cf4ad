"""
Ledger transaction types and wire encoding.

Transactions follow the zkSync v1 ("contracts-4") layout:
- JSON shape accepted by tx_submit / submit_txs_batch
- Signable byte representation (what the musig signers sign)
- Packed amount/fee encoding (decimal floating point)

Signable bytes:
    Transfer:      [type][ver][account_id:4][from:20][to:20][token:4][amount:5][fee:2][nonce:4][valid_from:8][valid_until:8]
    Withdraw:      [type][ver][account_id:4][from:20][to:20][token:4][amount:16][fee:2][nonce:4][valid_from:8][valid_until:8]
    ChangePubKey:  [type][ver][account_id:4][account:20][pk_hash:20][fee_token:4][fee:2][nonce:4][valid_from:8][valid_until:8]
"""

import hashlib
from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from ..core import MAX_TIMESTAMP, SYNC_TX_PREFIX, from_hex

# Packed float formats: mantissa bits, exponent bits (base 10)
AMOUNT_MANTISSA_BITS = 35
AMOUNT_EXPONENT_BITS = 5
FEE_MANTISSA_BITS = 11
FEE_EXPONENT_BITS = 5

TX_VERSION = 1
PUBKEY_HASH_PREFIX = "sync:"


class TxKind(Enum):
    """Ledger transaction kinds used by a swap. Value is the ledger type id."""
    WITHDRAW = 3
    TRANSFER = 5
    CHANGE_PUBKEY = 7

    @property
    def label(self) -> str:
        return {
            TxKind.WITHDRAW: "Withdraw",
            TxKind.TRANSFER: "Transfer",
            TxKind.CHANGE_PUBKEY: "ChangePubKey",
        }[self]

    @property
    def fee_type(self) -> Any:
        """Transaction type argument for the ledger's fee query."""
        if self is TxKind.CHANGE_PUBKEY:
            return {"ChangePubKey": "CREATE2"}
        return self.label

    @classmethod
    def from_label(cls, label: str) -> "TxKind":
        for kind in cls:
            if kind.label == label:
                return kind
        raise ValueError(f"Invalid transaction type: {label}")


# =============================================================================
# Packing
# =============================================================================

def _pack(value: int, mantissa_bits: int, exponent_bits: int) -> bytes:
    if value < 0:
        raise ValueError(f"Cannot pack negative value: {value}")
    max_mantissa = (1 << mantissa_bits) - 1
    max_exponent = (1 << exponent_bits) - 1

    exponent = 0
    mantissa = value
    while mantissa > max_mantissa:
        if mantissa % 10:
            raise ValueError(f"Value is not packable: {value}")
        mantissa //= 10
        exponent += 1
    if exponent > max_exponent:
        raise ValueError(f"Value is too big to pack: {value}")

    packed = (mantissa << exponent_bits) | exponent
    return packed.to_bytes((mantissa_bits + exponent_bits) // 8, "big")


def _unpack(data: bytes, exponent_bits: int) -> int:
    packed = int.from_bytes(data, "big")
    exponent = packed & ((1 << exponent_bits) - 1)
    mantissa = packed >> exponent_bits
    return mantissa * 10 ** exponent


def _closest_packable(value: int, mantissa_bits: int) -> int:
    max_mantissa = (1 << mantissa_bits) - 1
    exponent = 0
    while value > max_mantissa:
        value //= 10
        exponent += 1
    return value * 10 ** exponent


def pack_amount(amount: int) -> bytes:
    """Pack a transfer amount into 5 bytes."""
    return _pack(amount, AMOUNT_MANTISSA_BITS, AMOUNT_EXPONENT_BITS)


def pack_fee(fee: int) -> bytes:
    """Pack a fee into 2 bytes."""
    return _pack(fee, FEE_MANTISSA_BITS, FEE_EXPONENT_BITS)


def unpack_amount(data: bytes) -> int:
    return _unpack(data, AMOUNT_EXPONENT_BITS)


def unpack_fee(data: bytes) -> int:
    return _unpack(data, FEE_EXPONENT_BITS)


def closest_packable_amount(amount: int) -> int:
    """Largest packable amount not above `amount`."""
    return _closest_packable(amount, AMOUNT_MANTISSA_BITS)


def next_packable_amount(amount: int) -> int:
    """Smallest packable amount not below `amount`."""
    max_mantissa = (1 << AMOUNT_MANTISSA_BITS) - 1
    scale = 1
    while True:
        mantissa = -(-amount // scale)
        if mantissa <= max_mantissa:
            return mantissa * scale
        scale *= 10


def is_packable_amount(amount: int) -> bool:
    return closest_packable_amount(amount) == amount


# =============================================================================
# Field serialization
# =============================================================================

def serialize_address(address: str) -> bytes:
    raw = from_hex(address)
    if len(raw) != 20:
        raise ValueError(f"Invalid address: {address}")
    return raw


def serialize_pubkey_hash(pk_hash: str) -> bytes:
    if not pk_hash.startswith(PUBKEY_HASH_PREFIX):
        raise ValueError(f"Public key hash must start with '{PUBKEY_HASH_PREFIX}': {pk_hash}")
    raw = bytes.fromhex(pk_hash[len(PUBKEY_HASH_PREFIX):])
    if len(raw) != 20:
        raise ValueError(f"Public key hash must be 20 bytes: {pk_hash}")
    return raw


def format_pubkey_hash(pk_hash: bytes) -> str:
    return PUBKEY_HASH_PREFIX + pk_hash.hex()


def _u32(value: int) -> bytes:
    return value.to_bytes(4, "big")


def _u64(value: int) -> bytes:
    return value.to_bytes(8, "big")


# =============================================================================
# Transactions
# =============================================================================

@dataclass(frozen=True)
class TxSignature:
    """Signature attached to a ledger transaction."""
    pub_key: str     # hex, signer's (aggregate) public key
    signature: str   # hex

    def to_dict(self) -> Dict[str, str]:
        return {"pubKey": self.pub_key, "signature": self.signature}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "TxSignature":
        return cls(pub_key=data["pubKey"], signature=data["signature"])


@dataclass(frozen=True)
class LedgerTx:
    """A ledger transaction, optionally signed.

    Immutable: attaching a signature returns a new transaction.
    """
    kind: TxKind
    account_id: int
    account: str                 # Sender (escrow account)
    nonce: int
    fee: int
    fee_token_id: int
    valid_from: int = 0
    valid_until: int = MAX_TIMESTAMP

    # Transfer / Withdraw
    to: Optional[str] = None
    token_id: Optional[int] = None
    amount: int = 0

    # ChangePubKey
    new_pk_hash: Optional[str] = None
    eth_auth: Optional[Dict[str, str]] = field(default=None, hash=False)

    signature: Optional[TxSignature] = None

    def with_signature(self, signature: TxSignature) -> "LedgerTx":
        return replace(self, signature=signature)

    def sign_bytes(self) -> bytes:
        """Exact byte representation covered by the signature."""
        head = bytes([255 - self.kind.value, TX_VERSION]) + _u32(self.account_id)
        tail = (
            pack_fee(self.fee)
            + _u32(self.nonce)
            + _u64(self.valid_from)
            + _u64(self.valid_until)
        )

        if self.kind is TxKind.CHANGE_PUBKEY:
            return (
                head
                + serialize_address(self.account)
                + serialize_pubkey_hash(self.new_pk_hash)
                + _u32(self.fee_token_id)
                + tail
            )

        if self.kind is TxKind.TRANSFER:
            amount = pack_amount(self.amount)
        else:
            # Withdrawals carry the full 128-bit amount
            amount = self.amount.to_bytes(16, "big")

        return (
            head
            + serialize_address(self.account)
            + serialize_address(self.to)
            + _u32(self.token_id)
            + amount
            + tail
        )

    def tx_hash(self) -> str:
        """Ledger hash of the transaction ("sync-tx:<sha256 of sign bytes>")."""
        return SYNC_TX_PREFIX + hashlib.sha256(self.sign_bytes()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        """Ledger JSON wire shape. Also used to persist signed plans."""
        data: Dict[str, Any] = {
            "type": self.kind.label,
            "accountId": self.account_id,
            "nonce": self.nonce,
            "fee": str(self.fee),
            "validFrom": self.valid_from,
            "validUntil": self.valid_until,
        }
        if self.kind is TxKind.CHANGE_PUBKEY:
            data.update({
                "account": self.account,
                "newPkHash": self.new_pk_hash,
                "feeToken": self.fee_token_id,
                "ethAuthData": dict(self.eth_auth or {}),
            })
        else:
            data.update({
                "from": self.account,
                "to": self.to,
                "token": self.token_id,
                "amount": str(self.amount),
            })
            if self.fee_token_id != self.token_id:
                data["feeToken"] = self.fee_token_id
        data["signature"] = self.signature.to_dict() if self.signature else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerTx":
        kind = TxKind.from_label(data["type"])
        signature = data.get("signature")
        common = dict(
            kind=kind,
            account_id=int(data["accountId"]),
            nonce=int(data["nonce"]),
            fee=int(data["fee"]),
            valid_from=int(data.get("validFrom", 0)),
            valid_until=int(data.get("validUntil", MAX_TIMESTAMP)),
            signature=TxSignature.from_dict(signature) if signature else None,
        )
        if kind is TxKind.CHANGE_PUBKEY:
            return cls(
                account=data["account"],
                fee_token_id=int(data["feeToken"]),
                new_pk_hash=data["newPkHash"],
                eth_auth=dict(data.get("ethAuthData") or {}),
                **common,
            )
        token_id = int(data["token"])
        return cls(
            account=data["from"],
            to=data["to"],
            token_id=token_id,
            amount=int(data["amount"]),
            fee_token_id=int(data.get("feeToken", token_id)),
            **common,
        )
