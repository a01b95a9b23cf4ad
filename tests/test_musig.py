#!/usr/bin/env python3
"""
Threshold signature tests

1. Single-signer Schnorr signatures
2. Two-party MuSig over all five swap transactions
3. Coordinator behaviour on bad counterparty data
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from zkswap.core import ProtocolMismatchError
from zkswap.crypto.musig import Ed25519Musig, MusigError
from zkswap.swap.coordinator import SigningCoordinator

MESSAGES = [f"transaction {i}".encode() for i in range(5)]
GROUP_ORDER = 2**252 + 27742317777372353535851937790883648493


def flip(data: bytes) -> bytes:
    return bytes([data[0] ^ 1]) + data[1:]


class TestSchnorr(unittest.TestCase):

    def setUp(self):
        self.scheme = Ed25519Musig()
        self.key = self.scheme.generate_private_key()

    def test_sign_verify(self):
        public_key = self.scheme.public_key(self.key)
        signature = self.scheme.sign(self.key, b"hello")
        self.assertEqual(len(signature), 64)
        self.assertTrue(self.scheme.verify(b"hello", signature, public_key))
        self.assertFalse(self.scheme.verify(b"hellO", signature, public_key))
        self.assertFalse(self.scheme.verify(b"hello", flip(signature), public_key))

    def test_non_canonical_s_rejected(self):
        public_key = self.scheme.public_key(self.key)
        signature = self.scheme.sign(self.key, b"hello")
        s = int.from_bytes(signature[32:], "little") + GROUP_ORDER
        malleated = signature[:32] + s.to_bytes(32, "little")
        self.assertFalse(self.scheme.verify(b"hello", malleated, public_key))
        self.assertTrue(self.scheme.verify(b"hello", signature, public_key))

    def test_pubkey_hash(self):
        public_key = self.scheme.public_key(self.key)
        self.assertEqual(len(self.scheme.pubkey_hash(public_key)), 20)

    def test_bad_private_key(self):
        with self.assertRaises(MusigError):
            self.scheme.public_key(b"\x01" * 31)


class TestJointSigning(unittest.TestCase):

    def setUp(self):
        self.scheme = Ed25519Musig()
        self.provider_key = self.scheme.generate_private_key()
        self.client_key = self.scheme.generate_private_key()
        keys = [self.scheme.public_key(self.provider_key), self.scheme.public_key(self.client_key)]
        self.provider = SigningCoordinator(self.scheme, keys, 0, self.provider_key)
        self.client = SigningCoordinator(self.scheme, keys, 1, self.client_key)

    def commit(self):
        """Run the precommitment and commitment rounds for both sides."""
        provider_pre = self.provider.precommitments()
        client_pre = self.client.precommitments()
        client_com = self.client.exchange_precommitments(client_pre, provider_pre)
        provider_com = self.provider.exchange_precommitments(provider_pre, client_pre)
        self.client.exchange_commitments(provider_com)
        self.provider.exchange_commitments(client_com)

    def test_same_aggregate_key(self):
        self.assertEqual(self.provider.aggregate_pubkey(), self.client.aggregate_pubkey())

    def test_all_signatures_verify(self):
        self.commit()
        aggregate = self.client.aggregate_pubkey()
        for i, message in enumerate(MESSAGES):
            provider_share = self.provider.sign_share(message, i)
            client_share = self.client.sign_share(message, i)
            signature = self.client.combine(message, i, client_share, provider_share)
            self.assertEqual(signature, self.provider.combine(message, i, provider_share, client_share))
            self.assertTrue(self.scheme.verify(message, signature, aggregate))

    def test_corrupted_share_is_protocol_mismatch(self):
        self.commit()
        provider_share = self.provider.sign_share(MESSAGES[0], 0)
        client_share = self.client.sign_share(MESSAGES[0], 0)
        with self.assertRaises(ProtocolMismatchError):
            self.client.combine(MESSAGES[0], 0, client_share, flip(provider_share))
        self.assertTrue(self.client.spent)

        # spent signer refuses everything afterwards
        with self.assertRaises(ProtocolMismatchError):
            self.client.sign_share(MESSAGES[1], 1)

    def test_share_for_other_message_is_protocol_mismatch(self):
        self.commit()
        provider_share = self.provider.sign_share(b"something else", 0)
        client_share = self.client.sign_share(MESSAGES[0], 0)
        with self.assertRaises(ProtocolMismatchError):
            self.client.combine(MESSAGES[0], 0, client_share, provider_share)

    def test_nonce_single_use(self):
        self.commit()
        self.client.sign_share(MESSAGES[0], 0)
        with self.assertRaises(ProtocolMismatchError):
            self.client.sign_share(MESSAGES[0], 0)

    def test_commitment_must_open_precommitment(self):
        provider_pre = self.provider.precommitments()
        client_pre = self.client.precommitments()
        self.client.exchange_precommitments(client_pre, provider_pre)
        provider_com = self.provider.exchange_precommitments(provider_pre, client_pre)
        provider_com[3] = provider_com[4]
        with self.assertRaises(ProtocolMismatchError):
            self.client.exchange_commitments(provider_com)
        self.assertTrue(self.client.spent)

    def test_wrong_precommitment_count(self):
        provider_pre = self.provider.precommitments()
        client_pre = self.client.precommitments()
        with self.assertRaises(ProtocolMismatchError):
            self.client.exchange_precommitments(client_pre, provider_pre[:4])


if __name__ == "__main__":
    unittest.main()
