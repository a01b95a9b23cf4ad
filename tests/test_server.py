#!/usr/bin/env python3
"""
Provider HTTP API tests

Runs a client against the swap router through RemoteProvider, with the
provider side on the in-memory ledger.
"""

import os
import sys
import unittest

import httpx
from fastapi import FastAPI

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from zkswap.core import SwapError, InvalidStateError, LedgerPreconditionError, ProtocolMismatchError, SwapState
from zkswap.swap.remote import RemoteProvider
from routes import swap as swap_routes

from mock_ledger import SwapFixture, SELL, BUY


def make_app() -> FastAPI:
    app = FastAPI()
    app.include_router(swap_routes.router)
    return app


def make_http(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestSwapAPI(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.f = SwapFixture()
        swap_routes.swaps.clear()
        swap_routes.configure(self.f.new_provider)
        self.http = make_http(make_app())
        self.remote = RemoteProvider("http://test", http=self.http)

    async def asyncTearDown(self):
        await self.remote.aclose()
        swap_routes.swaps.clear()
        swap_routes.configure(None)

    async def handshake(self):
        client = self.f.client
        offer = await self.remote.prepare_swap(self.f.terms, client.public_key, client.address)
        commitments = await client.accept_offer(self.f.terms, offer)
        signatures = await self.remote.sign_swap(commitments)
        return await client.sign_swap(signatures)

    async def test_full_swap(self):
        shares = await self.handshake()
        await self.f.client.deposit_funds()
        result = await self.remote.check_swap(shares)
        self.assertEqual(result["state"], SwapState.SIGNED.value)

        hashes = await self.remote.finalize_swap()
        self.assertEqual(len(hashes), 3)
        self.assertTrue((await self.f.client.wait()).finalized)
        self.assertEqual(self.f.ledger.balance(self.f.client.address, "DAI"), BUY.amount)
        self.assertEqual(self.f.ledger.balance(self.f.provider.address, "ETH"), SELL.amount)

        status = await self.remote.status()
        self.assertEqual(status["state"], SwapState.FINALIZED.value)
        self.assertEqual(status["escrow"], self.f.client.swap_address())

    async def test_offer_escrow_matches(self):
        await self.handshake()
        status = await self.remote.status()
        self.assertEqual(status["escrow"], self.f.client.swap_address())
        self.assertEqual(status["state"], SwapState.PREPARED.value)
        self.assertEqual(swap_routes.active_swaps(), 1)

    async def test_second_sign_refused(self):
        client = self.f.client
        offer = await self.remote.prepare_swap(self.f.terms, client.public_key, client.address)
        commitments = await client.accept_offer(self.f.terms, offer)
        await self.remote.sign_swap(commitments)
        with self.assertRaises(InvalidStateError):
            await self.remote.sign_swap(commitments)

    async def test_finalize_before_client_deposit(self):
        shares = await self.handshake()
        await self.remote.check_swap(shares)
        with self.assertRaises(LedgerPreconditionError):
            await self.remote.finalize_swap()

    async def test_bad_shares(self):
        await self.handshake()
        with self.assertRaises(ProtocolMismatchError):
            await self.remote.check_swap([b"\x00" * 32] * 5)

    async def test_unknown_swap(self):
        self.remote.swap_id = "zs_000000000000"
        with self.assertRaises(SwapError):
            await self.remote.status()

    async def test_no_swap_yet(self):
        with self.assertRaises(InvalidStateError):
            await self.remote.finalize_swap()

    async def test_invalid_terms(self):
        response = await self.http.post("/api/swap/prepare", json={
            "terms": {"sell": "nonsense"},
            "client_public_key": "0x00",
            "client_address": self.f.client.address,
        })
        self.assertEqual(response.status_code, 400)

    async def test_not_configured(self):
        swap_routes.configure(None)
        response = await self.http.post("/api/swap/prepare", json={
            "terms": self.f.terms.to_dict(),
            "client_public_key": "0x00",
            "client_address": self.f.client.address,
        })
        self.assertEqual(response.status_code, 503)


class TestStatusEndpoint(unittest.IsolatedAsyncioTestCase):

    async def test_status(self):
        import server
        async with make_http(server.app) as http:
            response = await http.get("/api/status")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "ok")
        self.assertIn("swaps_active", data)


if __name__ == "__main__":
    unittest.main()
