"""
Handshake messages exchanged between client and provider.

    provider.prepare_swap  -> ProviderOffer       -> client.prepare_swap
    client.prepare_swap    -> ClientCommitments   -> provider.sign_swap
    provider.sign_swap     -> ProviderSignatures  -> client.sign_swap
    client.sign_swap       -> shares (list)       -> provider.check_swap

Byte fields travel as 0x-prefixed hex in to_dict()/from_dict().
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from ..core import from_hex, to_hex


def encode_list(values: List[bytes]) -> List[str]:
    return [to_hex(v) for v in values]


def decode_list(values: List[str]) -> List[bytes]:
    return [from_hex(v) for v in values]


@dataclass
class ProviderOffer:
    """Provider's opening message."""
    public_key: bytes
    address: str
    precommitments: List[bytes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "public_key": to_hex(self.public_key),
            "address": self.address,
            "precommitments": encode_list(self.precommitments),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderOffer":
        return cls(
            public_key=from_hex(data["public_key"]),
            address=data["address"],
            precommitments=decode_list(data["precommitments"]),
        )


@dataclass
class ClientCommitments:
    """Client's answer: its precommitments and commitments."""
    precommitments: List[bytes]
    commitments: List[bytes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "precommitments": encode_list(self.precommitments),
            "commitments": encode_list(self.commitments),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientCommitments":
        return cls(
            precommitments=decode_list(data["precommitments"]),
            commitments=decode_list(data["commitments"]),
        )


@dataclass
class ProviderSignatures:
    """Provider's commitments and signature shares for all transactions."""
    commitments: List[bytes]
    shares: List[bytes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitments": encode_list(self.commitments),
            "shares": encode_list(self.shares),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderSignatures":
        return cls(
            commitments=decode_list(data["commitments"]),
            shares=decode_list(data["shares"]),
        )
