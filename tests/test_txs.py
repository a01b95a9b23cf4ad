#!/usr/bin/env python3
"""
Ledger transaction encoding tests

1. Packed amounts and fees
2. Signable byte layout per transaction kind
3. Wire shape and hashes
"""

import os
import sys
import hashlib
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from zkswap.core import MAX_TIMESTAMP
from zkswap.chains.txs import (
    LedgerTx, TxKind, TxSignature,
    pack_amount, pack_fee, unpack_amount, unpack_fee,
    closest_packable_amount, next_packable_amount, is_packable_amount,
    serialize_pubkey_hash, format_pubkey_hash,
)

ESCROW = "0x" + "aa" * 20
CLIENT = "0x" + "bb" * 20
CREATOR = "0x" + "cc" * 20


def transfer(**overrides) -> LedgerTx:
    fields = dict(
        kind=TxKind.TRANSFER, account_id=7, account=ESCROW, to=CLIENT,
        token_id=1, amount=10**18, fee=10**15, fee_token_id=1, nonce=1,
        valid_from=0, valid_until=1700000000,
    )
    fields.update(overrides)
    return LedgerTx(**fields)


class TestPacking(unittest.TestCase):

    def test_pack_amount(self):
        self.assertEqual(pack_amount(0), b"\x00" * 5)
        # mantissa 1, exponent 18
        self.assertEqual(pack_amount(10**18), bytes([0, 0, 0, 0, (1 << 5) | 18]))
        self.assertEqual(unpack_amount(pack_amount(1000 * 10**18)), 1000 * 10**18)

    def test_pack_fee(self):
        self.assertEqual(pack_fee(10**15), bytes([0, (1 << 5) | 15]))
        self.assertEqual(unpack_fee(pack_fee(2047)), 2047)

    def test_unpackable_amount_rejected(self):
        with self.assertRaises(ValueError):
            pack_amount(123456789012345678)
        with self.assertRaises(ValueError):
            pack_fee(2049)
        with self.assertRaises(ValueError):
            pack_amount(-1)

    def test_closest_and_next_packable(self):
        value = 123456789012345678
        self.assertFalse(is_packable_amount(value))
        self.assertEqual(closest_packable_amount(value), 123456789010000000)
        self.assertEqual(next_packable_amount(value), 123456789020000000)
        self.assertEqual(next_packable_amount(10**18), 10**18)
        self.assertTrue(is_packable_amount(next_packable_amount(value)))


class TestSignBytes(unittest.TestCase):

    def test_transfer_layout(self):
        data = transfer().sign_bytes()
        self.assertEqual(len(data), 77)
        self.assertEqual(data[0], 255 - 5)
        self.assertEqual(data[1], 1)
        self.assertEqual(data[2:6], (7).to_bytes(4, "big"))
        self.assertEqual(data[6:26], bytes.fromhex("aa" * 20))
        self.assertEqual(data[26:46], bytes.fromhex("bb" * 20))
        self.assertEqual(data[-8:], (1700000000).to_bytes(8, "big"))

    def test_withdraw_carries_full_amount(self):
        tx = transfer(kind=TxKind.WITHDRAW, amount=123456789012345678)
        data = tx.sign_bytes()
        self.assertEqual(len(data), 88)
        self.assertEqual(data[0], 255 - 3)
        self.assertEqual(data[50:66], (123456789012345678).to_bytes(16, "big"))

    def test_change_pubkey_layout(self):
        tx = LedgerTx(
            kind=TxKind.CHANGE_PUBKEY, account_id=7, account=ESCROW, nonce=0,
            fee=3 * 10**15, fee_token_id=0, new_pk_hash=format_pubkey_hash(b"\x11" * 20),
            eth_auth={"type": "CREATE2", "creatorAddress": CREATOR},
        )
        data = tx.sign_bytes()
        self.assertEqual(len(data), 72)
        self.assertEqual(data[0], 255 - 7)
        self.assertEqual(data[26:46], b"\x11" * 20)
        self.assertEqual(data[-8:], MAX_TIMESTAMP.to_bytes(8, "big"))

    def test_signature_not_covered(self):
        tx = transfer()
        signed = tx.with_signature(TxSignature(pub_key="0x" + "01" * 32, signature="0x" + "02" * 64))
        self.assertEqual(tx.sign_bytes(), signed.sign_bytes())
        self.assertEqual(tx.tx_hash(), signed.tx_hash())


class TestWireShape(unittest.TestCase):

    def test_tx_hash(self):
        tx = transfer()
        self.assertEqual(tx.tx_hash(), "sync-tx:" + hashlib.sha256(tx.sign_bytes()).hexdigest())

    def test_transfer_dict(self):
        data = transfer().to_dict()
        self.assertEqual(data["type"], "Transfer")
        self.assertEqual(data["from"], ESCROW)
        self.assertEqual(data["amount"], str(10**18))
        self.assertNotIn("feeToken", data)
        self.assertIsNone(data["signature"])

        data = transfer(fee_token_id=0).to_dict()
        self.assertEqual(data["feeToken"], 0)

    def test_signed_transaction_survives_wire_shape(self):
        tx = transfer(kind=TxKind.WITHDRAW).with_signature(
            TxSignature(pub_key="0x" + "01" * 32, signature="0x" + "02" * 64)
        )
        restored = LedgerTx.from_dict(tx.to_dict())
        self.assertEqual(restored, tx)
        self.assertEqual(restored.to_dict()["signature"]["pubKey"], "0x" + "01" * 32)

    def test_change_pubkey_dict(self):
        tx = LedgerTx(
            kind=TxKind.CHANGE_PUBKEY, account_id=7, account=ESCROW, nonce=0,
            fee=3 * 10**15, fee_token_id=0, new_pk_hash=format_pubkey_hash(b"\x11" * 20),
            eth_auth={"type": "CREATE2", "creatorAddress": CREATOR, "saltArg": "0x00", "codeHash": "0x00"},
        )
        data = tx.to_dict()
        self.assertEqual(data["type"], "ChangePubKey")
        self.assertEqual(data["feeToken"], 0)
        self.assertEqual(data["ethAuthData"]["type"], "CREATE2")
        self.assertEqual(LedgerTx.from_dict(data), tx)

    def test_pubkey_hash_format(self):
        self.assertEqual(serialize_pubkey_hash(format_pubkey_hash(b"\x22" * 20)), b"\x22" * 20)
        with self.assertRaises(ValueError):
            serialize_pubkey_hash("0x" + "22" * 20)


if __name__ == "__main__":
    unittest.main()
