#!/usr/bin/env python3
"""
zkswap provider service
Runs the provider side of zkswap atomic swaps over HTTP.

Endpoints:
  GET  /api/status               - Health check
  POST /api/swap/prepare         - Open a swap, get the provider offer
  POST /api/swap/{id}/sign       - Commitment round + provider signature shares
  POST /api/swap/{id}/check      - Verify client shares
  POST /api/swap/{id}/finalize   - Deposit (if needed) and settle
  POST /api/swap/{id}/cancel     - Cancel after the timeout
  GET  /api/swap/{id}            - Swap status

Configuration: ZKSWAP_* environment variables (see SwapConfig.from_env),
plus ZKSWAP_ETH_PRIVATE_KEY / ZKSWAP_SIGNING_KEY for the provider's keys.
"""

import os
import time
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from zkswap import __version__
from zkswap.core import from_hex
from zkswap.chains.ledger import LedgerClient
from zkswap.chains.ethereum import EthereumClient
from zkswap.crypto.musig import Ed25519Musig
from zkswap.swap.party import PartyKeys, SwapConfig
from zkswap.swap.provider import SwapProvider
from routes import swap as swap_routes

# =============================================================================
# LOGGING
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger(__name__)

# =============================================================================
# CONFIG
# =============================================================================

CONFIG = SwapConfig.from_env()
SCHEME = Ed25519Musig()

_keys: Optional[PartyKeys] = None
_ledger: Optional[LedgerClient] = None


def load_provider_keys() -> PartyKeys:
    """Provider keys from the environment."""
    eth_key = os.environ.get("ZKSWAP_ETH_PRIVATE_KEY", "")
    signing_key = os.environ.get("ZKSWAP_SIGNING_KEY", "")
    if not eth_key or not signing_key:
        raise RuntimeError("ZKSWAP_ETH_PRIVATE_KEY and ZKSWAP_SIGNING_KEY must be set")
    return PartyKeys(eth_private_key=eth_key, signing_key=from_hex(signing_key))

# =============================================================================
# APP SETUP
# =============================================================================

app = FastAPI(
    title="zkswap provider",
    description="Trust-minimized atomic swaps on a layer-2 ledger",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(swap_routes.router)

# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/api/status")
async def get_status():
    """Health check."""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": int(time.time()),
        "provider": _keys.address if _keys else None,
        "ledger": _ledger.url if _ledger else None,
        "swaps_active": swap_routes.active_swaps(),
        "swaps_total": len(swap_routes.swaps),
    }


@app.on_event("startup")
async def startup_event():
    """Load keys and connect the provider factory."""
    global _keys, _ledger
    _keys = load_provider_keys()
    _ledger = LedgerClient(CONFIG.ledger)
    ethereum = EthereumClient(CONFIG.ethereum)

    def new_provider() -> SwapProvider:
        return SwapProvider(_keys, _ledger, SCHEME, CONFIG, ethereum)

    swap_routes.configure(new_provider)
    log.info(f"Provider {_keys.address} ready on ledger {_ledger.url}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    if _ledger:
        await _ledger.aclose()
    log.info("Provider stopped")


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    log.info(f"Starting zkswap provider on port {port}")
    log.info(f"Docs: http://0.0.0.0:{port}/docs")
    uvicorn.run(app, host="0.0.0.0", port=port)
