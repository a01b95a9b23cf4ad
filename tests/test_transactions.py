#!/usr/bin/env python3
"""
Swap transaction plan tests

Checks the five-transaction structure the swap's atomicity rests on:
nonce pairing {1,3} / {2,4}, validity windows around the timeout, fees and
the withdraw variant.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from zkswap.core import (
    WithdrawMode, LedgerPreconditionError, MAX_TIMESTAMP,
    KEY_REGISTRATION, PAY_BUYER, PAY_SELLER, REFUND, NONCE_BURN,
)
from zkswap.chains.txs import TxKind, format_pubkey_hash
from zkswap.crypto.musig import Ed25519Musig
from zkswap.escrow.create2 import derive_escrow_account
from zkswap.swap.transactions import build_transaction_plan, deposit_requirement, required_funds

from mock_ledger import MockLedger, Clock, FEES, make_terms, SELL, BUY

CLIENT = "0x" + "11" * 20
PROVIDER = "0x" + "22" * 20
PK_HASH = b"\x42" * 20


class TestTransactionPlan(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = Clock(1700000000)
        self.ledger = MockLedger(Ed25519Musig(), self.clock)
        self.terms = make_terms(CLIENT, PROVIDER, 1700000600)
        self.escrow = derive_escrow_account(PK_HASH, self.terms.recovery)
        self.ledger.fund(self.escrow.address, "ETH", 0)

    async def build(self, terms=None):
        return await build_transaction_plan(
            terms or self.terms, CLIENT, PROVIDER, self.escrow.address, PK_HASH, self.ledger
        )

    async def test_structure(self):
        plan = await self.build()
        self.assertEqual(len(plan), 5)
        self.assertEqual([tx.kind for tx in plan], [TxKind.CHANGE_PUBKEY] + [TxKind.TRANSFER] * 4)
        self.assertEqual([tx.nonce for tx in plan], [0, 1, 2, 1, 2])
        self.assertTrue(all(tx.account == self.escrow.address for tx in plan))
        self.assertTrue(all(tx.signature is None for tx in plan))

    async def test_validity_windows(self):
        plan = await self.build()
        timeout = self.terms.timeout
        self.assertEqual((plan[KEY_REGISTRATION].valid_from, plan[KEY_REGISTRATION].valid_until), (0, MAX_TIMESTAMP))
        self.assertEqual((plan[PAY_BUYER].valid_from, plan[PAY_BUYER].valid_until), (0, timeout))
        self.assertEqual((plan[PAY_SELLER].valid_from, plan[PAY_SELLER].valid_until), (0, MAX_TIMESTAMP))
        self.assertEqual((plan[REFUND].valid_from, plan[REFUND].valid_until), (timeout + 1, MAX_TIMESTAMP))
        self.assertEqual((plan[NONCE_BURN].valid_from, plan[NONCE_BURN].valid_until), (timeout + 1, MAX_TIMESTAMP))

    async def test_payouts(self):
        plan = await self.build()
        self.assertEqual((plan[PAY_BUYER].to, plan[PAY_BUYER].token_id, plan[PAY_BUYER].amount), (CLIENT, 1, BUY.amount))
        self.assertEqual((plan[PAY_SELLER].to, plan[PAY_SELLER].token_id, plan[PAY_SELLER].amount), (PROVIDER, 0, SELL.amount))
        self.assertEqual((plan[REFUND].to, plan[REFUND].token_id, plan[REFUND].amount), (CLIENT, 0, SELL.amount))
        self.assertEqual((plan[NONCE_BURN].to, plan[NONCE_BURN].token_id, plan[NONCE_BURN].amount), (PROVIDER, 1, 0))

    async def test_key_registration(self):
        plan = await self.build()
        tx = plan[KEY_REGISTRATION]
        self.assertEqual(tx.new_pk_hash, format_pubkey_hash(PK_HASH))
        self.assertEqual(tx.fee, FEES["ChangePubKey"])
        self.assertEqual(tx.fee_token_id, 0)
        self.assertEqual(tx.eth_auth, {
            "type": "CREATE2",
            "creatorAddress": self.terms.recovery.creator,
            "saltArg": self.terms.recovery.salt,
            "codeHash": self.terms.recovery.code_hash,
        })

    async def test_withdraw_mode(self):
        terms = make_terms(CLIENT, PROVIDER, 1700000600, WithdrawMode.TO_BASE_CHAIN)
        plan = await self.build(terms)
        self.assertEqual(plan[PAY_SELLER].kind, TxKind.WITHDRAW)
        self.assertEqual(plan[PAY_SELLER].fee, FEES["Withdraw"])
        self.assertEqual(plan[PAY_SELLER].to, PROVIDER)

    async def test_unknown_escrow_account(self):
        other = derive_escrow_account(b"\x43" * 20, self.terms.recovery)
        with self.assertRaises(LedgerPreconditionError):
            await build_transaction_plan(self.terms, CLIENT, PROVIDER, other.address, PK_HASH, self.ledger)

    async def test_funds(self):
        plan = await self.build()
        self.assertEqual(
            required_funds(plan, [KEY_REGISTRATION, PAY_BUYER, PAY_SELLER]),
            {0: SELL.amount + FEES["ChangePubKey"] + FEES["Transfer"], 1: BUY.amount + FEES["Transfer"]},
        )
        self.assertEqual(
            deposit_requirement(plan, self.terms, client_side=True),
            SELL.amount + FEES["ChangePubKey"] + FEES["Transfer"],
        )
        self.assertEqual(deposit_requirement(plan, self.terms, client_side=False), BUY.amount + FEES["Transfer"])


if __name__ == "__main__":
    unittest.main()
