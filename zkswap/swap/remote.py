"""
HTTP client for a provider exposed by server.py.

Gives a client the same handshake calls as a local SwapProvider:

    remote = RemoteProvider("http://provider:8080")
    offer = await remote.prepare_swap(terms, client.public_key, client.address)
    commitments = await client.accept_offer(terms, offer)
    signatures = await remote.sign_swap(commitments)
    shares = await client.sign_swap(signatures)
    await client.deposit_funds()
    await remote.check_swap(shares)
    await remote.finalize_swap()
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core import (
    SwapTerms, SwapError, InvalidStateError, ProtocolMismatchError,
    LedgerPreconditionError, to_hex,
)
from .messages import ClientCommitments, ProviderOffer, ProviderSignatures, encode_list

log = logging.getLogger(__name__)

# HTTP status -> exception raised on the client side
STATUS_ERRORS = {
    400: ProtocolMismatchError,
    409: InvalidStateError,
    412: LedgerPreconditionError,
}


class RemoteProvider:
    """A SwapProvider reached over HTTP. One instance per swap."""

    def __init__(self, base_url: str, http: httpx.AsyncClient = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http
        self.swap_id: Optional[str] = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def aclose(self):
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    async def __aenter__(self) -> "RemoteProvider":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _request(self, method: str, path: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/api/swap{path}"
        try:
            response = await self.http.request(method, url, json=payload)
        except httpx.HTTPError as e:
            raise SwapError(f"Provider unreachable: {e}")

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            error = STATUS_ERRORS.get(response.status_code, SwapError)
            raise error(f"Provider refused {path} ({response.status_code}): {detail}")
        return response.json()

    def _swap_path(self, action: str = "") -> str:
        if self.swap_id is None:
            raise InvalidStateError("No remote swap - call prepare_swap first")
        return f"/{self.swap_id}{action}"

    # =========================================================================
    # Handshake
    # =========================================================================

    async def prepare_swap(self, terms: SwapTerms, client_public_key: bytes,
                           client_address: str) -> ProviderOffer:
        result = await self._request("POST", "/prepare", {
            "terms": terms.to_dict(),
            "client_public_key": to_hex(client_public_key),
            "client_address": client_address,
        })
        self.swap_id = result["swap_id"]
        log.info(f"Remote swap {self.swap_id} prepared, escrow {result.get('escrow')}")
        return ProviderOffer.from_dict(result["offer"])

    async def sign_swap(self, data: ClientCommitments) -> ProviderSignatures:
        result = await self._request("POST", self._swap_path("/sign"), data.to_dict())
        return ProviderSignatures.from_dict(result)

    async def check_swap(self, shares: List[bytes]) -> Dict[str, Any]:
        return await self._request("POST", self._swap_path("/check"), {"shares": encode_list(shares)})

    # =========================================================================
    # Settlement
    # =========================================================================

    async def finalize_swap(self) -> List[str]:
        result = await self._request("POST", self._swap_path("/finalize"))
        return result["hashes"]

    async def cancel_swap(self) -> List[str]:
        result = await self._request("POST", self._swap_path("/cancel"))
        return result["hashes"]

    async def status(self) -> Dict[str, Any]:
        return await self._request("GET", self._swap_path())
