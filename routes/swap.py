"""
Provider swap endpoints.

Each swap gets its own SwapProvider, created by the factory server.py
registers at startup, and is addressed by the swap id returned from
/prepare. Byte fields travel as 0x-prefixed hex.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from zkswap.core import (
    SwapState, SwapTerms, SwapError, InvalidStateError, ProtocolMismatchError,
    LedgerPreconditionError, from_hex,
)
from zkswap.chains.ledger import LedgerRPCError
from zkswap.swap.messages import ClientCommitments, decode_list
from zkswap.swap.provider import SwapProvider

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/swap")

# ---------------------------------------------------------------------------
# Registry (module-level state, set up by server.py)
# ---------------------------------------------------------------------------

_provider_factory: Optional[Callable[[], SwapProvider]] = None
swaps: Dict[str, Dict[str, Any]] = {}


def configure(provider_factory: Callable[[], SwapProvider]):
    """Register the SwapProvider factory. Called once at startup by server.py."""
    global _provider_factory
    _provider_factory = provider_factory


def active_swaps() -> int:
    return len([s for s in swaps.values() if s["provider"].state is not SwapState.FINALIZED])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class PrepareRequest(BaseModel):
    terms: Dict[str, Any]
    client_public_key: str = Field(..., examples=["0x..."])
    client_address: str = Field(..., examples=["0x..."])


class SignRequest(BaseModel):
    precommitments: List[str]
    commitments: List[str]


class CheckRequest(BaseModel):
    shares: List[str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, InvalidStateError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, LedgerPreconditionError):
        return HTTPException(status_code=412, detail=str(e))
    if isinstance(e, (ProtocolMismatchError, SwapError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, LedgerRPCError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _get_provider(swap_id: str) -> SwapProvider:
    entry = swaps.get(swap_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Swap not found")
    return entry["provider"]


def _decode(values: List[str]) -> List[bytes]:
    try:
        return decode_list(values)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed hex: {e}")


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------

@router.post("/prepare")
async def prepare_swap(req: PrepareRequest):
    """Open a swap for a client: returns the swap id and the provider offer."""
    if _provider_factory is None:
        raise HTTPException(status_code=503, detail="Provider not configured")
    try:
        terms = SwapTerms.from_dict(req.terms)
        client_public_key = from_hex(req.client_public_key)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid swap terms: {e}")

    provider = _provider_factory()
    try:
        offer = await provider.prepare_swap(terms, client_public_key, req.client_address)
    except (SwapError, ValueError, LedgerRPCError) as e:
        raise _http_error(e)

    swap_id = f"zs_{uuid.uuid4().hex[:12]}"
    swaps[swap_id] = {"provider": provider, "created_at": int(time.time())}
    log.info(f"Swap {swap_id} prepared for {req.client_address}, escrow {provider.swap_address()}")
    return {
        "swap_id": swap_id,
        "offer": offer.to_dict(),
        "escrow": provider.swap_address(),
    }


@router.post("/{swap_id}/sign")
async def sign_swap(swap_id: str, req: SignRequest):
    """Commitment round: client commitments in, provider commitments and shares out."""
    provider = _get_provider(swap_id)
    data = ClientCommitments(
        precommitments=_decode(req.precommitments),
        commitments=_decode(req.commitments),
    )
    try:
        signatures = await provider.sign_swap(data)
    except (SwapError, ValueError) as e:
        raise _http_error(e)
    return signatures.to_dict()


@router.post("/{swap_id}/check")
async def check_swap(swap_id: str, req: CheckRequest):
    """Verify the client's shares; the provider is SIGNED afterwards."""
    provider = _get_provider(swap_id)
    try:
        await provider.check_swap(_decode(req.shares))
    except (SwapError, ValueError) as e:
        raise _http_error(e)
    log.info(f"Swap {swap_id} signed")
    return {"swap_id": swap_id, "state": provider.state.value}


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

@router.post("/{swap_id}/finalize")
async def finalize_swap(swap_id: str):
    provider = _get_provider(swap_id)
    try:
        hashes = await provider.finalize_swap()
    except (SwapError, LedgerRPCError) as e:
        raise _http_error(e)
    return {"swap_id": swap_id, "state": provider.state.value, "hashes": hashes}


@router.post("/{swap_id}/cancel")
async def cancel_swap(swap_id: str):
    provider = _get_provider(swap_id)
    try:
        hashes = await provider.cancel_swap()
    except (SwapError, LedgerRPCError) as e:
        raise _http_error(e)
    return {"swap_id": swap_id, "state": provider.state.value, "hashes": hashes}


@router.get("/{swap_id}")
async def get_swap(swap_id: str):
    provider = _get_provider(swap_id)
    status = provider.party.status()
    status["swap_id"] = swap_id
    status["created_at"] = swaps[swap_id]["created_at"]
    return status
