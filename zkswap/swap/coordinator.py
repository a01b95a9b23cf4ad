"""
Threshold-signing coordination.

Sequences the two-party signature rounds over the whole transaction plan:
    round 1: precommitments for all transactions (one list per party)
    round 2: commitments for all transactions
    round 3: per-transaction signature shares, combined and verified at once

Both parties' lists are combined by position (provider 0, client 1). A
combined signature is only returned after it verifies against the exact
signable bytes, so a counterparty can't slip in a valid-looking signature for
a different transaction.
"""

import logging
from typing import List, Sequence

from ..core import ProtocolMismatchError, transpose, TOTAL_TRANSACTIONS
from ..crypto.musig import JointSigner, MusigError, SignatureScheme

log = logging.getLogger(__name__)


class SigningCoordinator:
    """Drives one JointSigner through the rounds for a single swap attempt."""

    def __init__(self, scheme: SignatureScheme, public_keys: Sequence[bytes],
                 position: int, private_key: bytes, count: int = TOTAL_TRANSACTIONS):
        self.position = position
        self.count = count
        self._private_key = private_key
        self._signer: JointSigner = scheme.new_signer(list(public_keys), position, count)
        self._commitments: List[bytes] = []
        self._spent = False

    @property
    def spent(self) -> bool:
        """True once a round failed; the signer's nonces can't be reused."""
        return self._spent

    def _ordered(self, local: Sequence, remote: Sequence) -> List[Sequence]:
        return [remote, local] if self.position == 1 else [local, remote]

    def _check(self):
        if self._spent:
            raise ProtocolMismatchError("Signing state exhausted by an earlier failure - reset and restart")

    def _fail(self, message: str):
        self._spent = True
        log.warning(f"Signing round failed: {message}")
        raise ProtocolMismatchError(message)

    def _check_length(self, values: Sequence, name: str):
        if len(values) != self.count:
            self._fail(f"Expected {self.count} {name}, got {len(values)}")

    # =========================================================================
    # Rounds
    # =========================================================================

    def aggregate_pubkey(self) -> bytes:
        return self._signer.compute_pubkey()

    def precommitments(self) -> List[bytes]:
        """Round 1: local precommitments for every transaction."""
        self._check()
        return self._signer.compute_precommitments()

    def exchange_precommitments(self, local: Sequence[bytes], remote: Sequence[bytes]) -> List[bytes]:
        """Round 1 -> 2: combine both precommitment lists, return local commitments."""
        self._check()
        self._check_length(remote, "precommitments")
        try:
            self._commitments = self._signer.receive_precommitments(
                transpose(self._ordered(local, remote))
            )
        except (MusigError, ValueError) as e:
            self._fail(f"Invalid precommitments: {e}")
        return list(self._commitments)

    def exchange_commitments(self, remote: Sequence[bytes]):
        """Round 2: combine both commitment lists."""
        self._check()
        self._check_length(remote, "commitments")
        try:
            self._signer.receive_commitments(transpose(self._ordered(self._commitments, remote)))
        except (MusigError, ValueError) as e:
            self._fail(f"Invalid commitments: {e}")

    def sign_share(self, message: bytes, index: int) -> bytes:
        """Round 3: local signature share for transaction `index`."""
        self._check()
        try:
            return self._signer.sign(self._private_key, message, index)
        except MusigError as e:
            self._fail(f"Can't sign transaction {index}: {e}")

    def combine(self, message: bytes, index: int, local_share: bytes, remote_share: bytes) -> bytes:
        """
        Round 3: combine both shares and verify the result over `message`.

        Raises:
            ProtocolMismatchError: shares don't combine into a valid signature
        """
        self._check()
        try:
            signature = self._signer.receive_signature_shares(
                self._ordered(local_share, remote_share), index
            )
        except (MusigError, ValueError, TypeError) as e:
            self._fail(f"Invalid signature share for transaction {index}: {e}")
        # either the counterparty sent a bad share or it signed different transaction data
        if not self._signer.verify(message, signature):
            self._fail(f"Signature for transaction {index} does not verify")
        return signature
