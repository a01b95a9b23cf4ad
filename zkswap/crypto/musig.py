"""
Two-party threshold signatures (MuSig) for zkswap.

The swap engine consumes signatures through two interfaces:
- SignatureScheme: key handling, single-signer signatures, joint signer factory
- JointSigner: per-swap state for the precommitment/commitment/share rounds

Ed25519Musig is a MuSig implementation over Ed25519 built on libsodium's
group operations (PyNaCl). Deployments against a ledger with its own curve
inject that ledger's primitive instead; the engine never looks inside.

Protocol (per transaction j, parties i = 0, 1):
    a_i = H_agg(L || X_i),  L = H(X_0 || X_1),  X = a_0 X_0 + a_1 X_1
    round 1: r_ij random, R_ij = r_ij G, send t_ij = H_com(R_ij)
    round 2: send R_ij, check H_com(R_ij) == t_ij, R_j = R_0j + R_1j
    round 3: c_j = H_sig(R_j || X || m_j), s_ij = r_ij + c_j a_i x_i
    signature_j = R_j || (s_0j + s_1j)
"""

import hashlib
import secrets
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from nacl import bindings
from nacl.exceptions import CryptoError

SCALAR_SIZE = 32
POINT_SIZE = 32
SIGNATURE_SIZE = 64
PUBKEY_HASH_SIZE = 20


class MusigError(ValueError):
    """Malformed or inconsistent input to the signature primitive."""


class JointSigner(ABC):
    """Per-swap two-party signer state. One instance per swap attempt."""

    @abstractmethod
    def compute_precommitments(self) -> List[bytes]:
        """Local precommitments, one per transaction."""

    @abstractmethod
    def receive_precommitments(self, precommitments: Sequence[Sequence[bytes]]) -> List[bytes]:
        """Store everyone's precommitments (per transaction, ordered by position).

        Returns the local commitments, one per transaction.
        """

    @abstractmethod
    def receive_commitments(self, commitments: Sequence[Sequence[bytes]]):
        """Store everyone's commitments (per transaction, ordered by position)."""

    @abstractmethod
    def compute_pubkey(self) -> bytes:
        """Aggregate public key."""

    @abstractmethod
    def sign(self, private_key: bytes, message: bytes, index: int) -> bytes:
        """Local signature share for transaction `index`."""

    @abstractmethod
    def receive_signature_shares(self, shares: Sequence[bytes], index: int) -> bytes:
        """Combine all shares (ordered by position) into a signature."""

    @abstractmethod
    def verify(self, message: bytes, signature: bytes) -> bool:
        """Verify a signature against the aggregate public key."""


class SignatureScheme(ABC):
    """Signature capability injected into swap parties."""

    @abstractmethod
    def generate_private_key(self) -> bytes:
        pass

    @abstractmethod
    def public_key(self, private_key: bytes) -> bytes:
        pass

    @abstractmethod
    def pubkey_hash(self, public_key: bytes) -> bytes:
        """20-byte hash identifying a public key on the ledger."""

    @abstractmethod
    def sign(self, private_key: bytes, message: bytes) -> bytes:
        """Single-signer signature (party's own ledger account)."""

    @abstractmethod
    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        pass

    @abstractmethod
    def new_signer(self, public_keys: Sequence[bytes], position: int, count: int) -> JointSigner:
        """Create the joint signer for one swap attempt."""


# =============================================================================
# Ed25519 group helpers
# =============================================================================

def _hash_scalar(tag: bytes, *parts: bytes) -> bytes:
    digest = hashlib.sha512(tag + b"".join(parts)).digest()
    return bindings.crypto_core_ed25519_scalar_reduce(digest)


def _random_scalar() -> bytes:
    return bindings.crypto_core_ed25519_scalar_reduce(secrets.token_bytes(64))


def _commit(point: bytes) -> bytes:
    return hashlib.sha256(b"zkswap/musig/commit" + point).digest()


def _check_point(point: bytes, name: str) -> bytes:
    if not isinstance(point, (bytes, bytearray)) or len(point) != POINT_SIZE:
        raise MusigError(f"{name} must be {POINT_SIZE} bytes")
    if not bindings.crypto_core_ed25519_is_valid_point(bytes(point)):
        raise MusigError(f"{name} is not a valid curve point")
    return bytes(point)


def _check_scalar(scalar: bytes, name: str) -> bytes:
    if not isinstance(scalar, (bytes, bytearray)) or len(scalar) != SCALAR_SIZE:
        raise MusigError(f"{name} must be {SCALAR_SIZE} bytes")
    return bytes(scalar)


def _challenge(r_point: bytes, pubkey: bytes, message: bytes) -> bytes:
    return _hash_scalar(b"zkswap/musig/sig", r_point, pubkey, message)


def _verify(message: bytes, signature: bytes, pubkey: bytes) -> bool:
    if len(signature) != SIGNATURE_SIZE:
        return False
    r_point, s = signature[:POINT_SIZE], signature[POINT_SIZE:]
    # s must be canonical (< group order), otherwise s + k*L would also verify
    if bindings.crypto_core_ed25519_scalar_reduce(s + b"\x00" * SCALAR_SIZE) != s:
        return False
    try:
        lhs = bindings.crypto_scalarmult_ed25519_base_noclamp(s)
        c = _challenge(r_point, pubkey, message)
        rhs = bindings.crypto_core_ed25519_add(
            r_point, bindings.crypto_scalarmult_ed25519_noclamp(c, pubkey)
        )
    except CryptoError:
        return False
    return secrets.compare_digest(lhs, rhs)


# =============================================================================
# Ed25519 MuSig
# =============================================================================

class Ed25519JointSigner(JointSigner):
    """MuSig joint signer for a fixed set of public keys."""

    def __init__(self, public_keys: Sequence[bytes], position: int, count: int):
        if not 0 <= position < len(public_keys):
            raise MusigError(f"Position {position} out of range")
        self.public_keys = [_check_point(pk, "public key") for pk in public_keys]
        self.position = position
        self.count = count

        key_list = hashlib.sha512(b"zkswap/musig/keys" + b"".join(self.public_keys)).digest()
        self._coefficients = [
            _hash_scalar(b"zkswap/musig/agg", key_list, pk) for pk in self.public_keys
        ]
        aggregate = None
        for pk, a in zip(self.public_keys, self._coefficients):
            term = bindings.crypto_scalarmult_ed25519_noclamp(a, pk)
            aggregate = term if aggregate is None else bindings.crypto_core_ed25519_add(aggregate, term)
        self._pubkey = aggregate

        self._nonces: List[Optional[bytes]] = []
        self._points: List[bytes] = []
        self._precommitments: Optional[List[List[bytes]]] = None
        self._aggregate_points: Optional[List[bytes]] = None

    def compute_precommitments(self) -> List[bytes]:
        if self._nonces:
            raise MusigError("Precommitments already generated")
        self._nonces = [_random_scalar() for _ in range(self.count)]
        self._points = [bindings.crypto_scalarmult_ed25519_base_noclamp(r) for r in self._nonces]
        return [_commit(p) for p in self._points]

    def receive_precommitments(self, precommitments: Sequence[Sequence[bytes]]) -> List[bytes]:
        if not self._nonces:
            raise MusigError("Precommitments not generated yet")
        if len(precommitments) != self.count:
            raise MusigError(f"Expected {self.count} precommitment sets, got {len(precommitments)}")
        stored = []
        for j, row in enumerate(precommitments):
            if len(row) != len(self.public_keys):
                raise MusigError(f"Precommitment set {j} has {len(row)} entries")
            if bytes(row[self.position]) != _commit(self._points[j]):
                raise MusigError(f"Own precommitment {j} does not match")
            stored.append([bytes(t) for t in row])
        self._precommitments = stored
        return list(self._points)

    def receive_commitments(self, commitments: Sequence[Sequence[bytes]]):
        if self._precommitments is None:
            raise MusigError("Precommitments not received yet")
        if len(commitments) != self.count:
            raise MusigError(f"Expected {self.count} commitment sets, got {len(commitments)}")
        aggregate_points = []
        for j, row in enumerate(commitments):
            if len(row) != len(self.public_keys):
                raise MusigError(f"Commitment set {j} has {len(row)} entries")
            total = None
            for i, point in enumerate(row):
                point = _check_point(point, f"commitment {j}/{i}")
                if _commit(point) != self._precommitments[j][i]:
                    raise MusigError(f"Commitment {j}/{i} does not open its precommitment")
                total = point if total is None else bindings.crypto_core_ed25519_add(total, point)
            aggregate_points.append(total)
        self._aggregate_points = aggregate_points

    def compute_pubkey(self) -> bytes:
        return self._pubkey

    def sign(self, private_key: bytes, message: bytes, index: int) -> bytes:
        if self._aggregate_points is None:
            raise MusigError("Commitments not received yet")
        nonce = self._nonces[index]
        if nonce is None:
            raise MusigError(f"Nonce {index} already used")
        private_key = _check_scalar(private_key, "private key")
        if bindings.crypto_scalarmult_ed25519_base_noclamp(private_key) != self.public_keys[self.position]:
            raise MusigError("Private key does not match this signer's position")

        c = _challenge(self._aggregate_points[index], self._pubkey, message)
        weighted = bindings.crypto_core_ed25519_scalar_mul(
            bindings.crypto_core_ed25519_scalar_mul(c, self._coefficients[self.position]),
            private_key,
        )
        self._nonces[index] = None
        return bindings.crypto_core_ed25519_scalar_add(nonce, weighted)

    def receive_signature_shares(self, shares: Sequence[bytes], index: int) -> bytes:
        if self._aggregate_points is None:
            raise MusigError("Commitments not received yet")
        if len(shares) != len(self.public_keys):
            raise MusigError(f"Expected {len(self.public_keys)} shares, got {len(shares)}")
        total = None
        for i, share in enumerate(shares):
            share = _check_scalar(share, f"signature share {i}")
            total = share if total is None else bindings.crypto_core_ed25519_scalar_add(total, share)
        return self._aggregate_points[index] + total

    def verify(self, message: bytes, signature: bytes) -> bool:
        return _verify(message, signature, self._pubkey)


class Ed25519Musig(SignatureScheme):
    """Schnorr signatures and two-party MuSig over Ed25519."""

    def generate_private_key(self) -> bytes:
        return _random_scalar()

    def public_key(self, private_key: bytes) -> bytes:
        return bindings.crypto_scalarmult_ed25519_base_noclamp(
            _check_scalar(private_key, "private key")
        )

    def pubkey_hash(self, public_key: bytes) -> bytes:
        return hashlib.blake2b(public_key, digest_size=PUBKEY_HASH_SIZE).digest()

    def sign(self, private_key: bytes, message: bytes) -> bytes:
        private_key = _check_scalar(private_key, "private key")
        pubkey = self.public_key(private_key)
        nonce = _hash_scalar(b"zkswap/schnorr/nonce", private_key, secrets.token_bytes(32), message)
        r_point = bindings.crypto_scalarmult_ed25519_base_noclamp(nonce)
        c = _challenge(r_point, pubkey, message)
        s = bindings.crypto_core_ed25519_scalar_add(
            nonce, bindings.crypto_core_ed25519_scalar_mul(c, private_key)
        )
        return r_point + s

    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        return _verify(message, signature, public_key)

    def new_signer(self, public_keys: Sequence[bytes], position: int, count: int) -> JointSigner:
        return Ed25519JointSigner(public_keys, position, count)
