"""
Swap protocol for zkswap.

SwapClient and SwapProvider drive one swap each through the handshake,
deposit and settlement over a shared SwapParty engine.
"""

from .party import SwapParty, SwapConfig, PartyKeys, SwapSession, WaitResult, WaitStatus
from .client import SwapClient
from .provider import SwapProvider
from .remote import RemoteProvider

__all__ = [
    "SwapParty", "SwapConfig", "PartyKeys", "SwapSession", "WaitResult", "WaitStatus",
    "SwapClient", "SwapProvider", "RemoteProvider",
]
