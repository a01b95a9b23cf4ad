"""
Swap party engine for zkswap.

State machine shared by the client and the provider roles:

    EMPTY -> PREPARED -> SIGNED -> DEPOSITED -> FINALIZED
                ^  reset (any state but DEPOSITED, unless forced) -> EMPTY

Every operation checks its precondition first and raises InvalidStateError
without touching anything if it doesn't hold. Intermediate results are kept
in locals and only assigned once the whole operation succeeded, so a failed
call leaves the party exactly as it was (apart from a spent signer after a
protocol mismatch, which requires a reset).
"""

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core import (
    SwapState, SwapTerms, Role, DepositSource, WithdrawMode, SwapError, InvalidStateError,
    TimingViolationError, ProtocolMismatchError, LedgerPreconditionError,
    KEY_REGISTRATION, PAY_BUYER, PAY_SELLER, REFUND, NONCE_BURN,
    TOTAL_TRANSACTIONS, from_hex, to_hex,
)
from ..chains.ledger import LedgerClient, LedgerConfig, LedgerRPCError, TxReceipt
from ..chains.ethereum import EthereumClient, EthereumConfig, address_from_key
from ..chains.txs import (
    LedgerTx, TxKind, TxSignature, format_pubkey_hash, is_packable_amount,
    next_packable_amount,
)
from ..crypto.musig import SignatureScheme
from ..escrow.create2 import EscrowAccount, derive_escrow_account
from .coordinator import SigningCoordinator
from .transactions import (
    TransactionPlan, build_transaction_plan, deposit_requirement, required_funds,
)

log = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class SwapConfig:
    """Swap party configuration."""
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    ethereum: EthereumConfig = field(default_factory=EthereumConfig)

    # Rescue path (deployer contract + rescue contract init code)
    deployer_address: str = ""
    rescuer_bytecode: str = ""

    # Confirmation level awaited for ledger receipts ("COMMIT" or "VERIFY")
    confirmation: str = "COMMIT"

    # Seconds to wait for a submitted ledger transaction
    receipt_timeout: float = 120.0

    @classmethod
    def from_env(cls, environ: Dict[str, str] = None) -> "SwapConfig":
        """Build configuration from ZKSWAP_* environment variables."""
        env = os.environ if environ is None else environ
        ledger = LedgerConfig(
            network=env.get("ZKSWAP_LEDGER_NETWORK", "localhost"),
            url=env.get("ZKSWAP_LEDGER_URL", ""),
            timeout=float(env.get("ZKSWAP_LEDGER_TIMEOUT", 15.0)),
            poll_interval=float(env.get("ZKSWAP_POLL_INTERVAL", 1.0)),
        )
        ethereum = EthereumConfig(
            network=env.get("ZKSWAP_ETH_NETWORK", "localhost"),
            rpc_url=env.get("ZKSWAP_ETH_RPC_URL", ""),
            chain_id=int(env.get("ZKSWAP_CHAIN_ID", 9)),
            main_contract=env.get("ZKSWAP_MAIN_CONTRACT", ""),
        )
        return cls(
            ledger=ledger,
            ethereum=ethereum,
            deployer_address=env.get("ZKSWAP_DEPLOYER", ""),
            rescuer_bytecode=env.get("ZKSWAP_RESCUER_BYTECODE", ""),
            confirmation=env.get("ZKSWAP_CONFIRMATION", "COMMIT").upper(),
            receipt_timeout=float(env.get("ZKSWAP_RECEIPT_TIMEOUT", 120.0)),
        )


@dataclass(frozen=True)
class PartyKeys:
    """A party's secrets. Never transmitted."""
    eth_private_key: str    # base-chain key, also determines the ledger address
    signing_key: bytes      # ledger signing key (signature scheme private key)

    @property
    def address(self) -> str:
        return address_from_key(self.eth_private_key)


# =============================================================================
# Results and sessions
# =============================================================================

class WaitStatus(Enum):
    FINALIZED = "finalized"   # Payout transaction executed
    TIMED_OUT = "timed_out"   # Timeout reached first
    FAILED = "failed"         # Payout failed on the ledger, or the ledger could not be queried


@dataclass
class WaitResult:
    """Outcome of SwapParty.wait()."""
    status: WaitStatus
    receipt: Optional[TxReceipt] = None
    error: Optional[str] = None

    @property
    def finalized(self) -> bool:
        return self.status is WaitStatus.FINALIZED


@dataclass
class SwapSession:
    """Everything needed to resume a swap after a restart (see load_swap)."""
    terms: SwapTerms
    transactions: Tuple[LedgerTx, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "terms": self.terms.to_dict(),
            "transactions": [tx.to_dict() for tx in self.transactions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwapSession":
        return cls(
            terms=SwapTerms.from_dict(data["terms"]),
            transactions=tuple(LedgerTx.from_dict(tx) for tx in data["transactions"]),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "SwapSession":
        return cls.from_dict(json.loads(text))


# =============================================================================
# Engine
# =============================================================================

class SwapParty:
    """
    One party's side of a swap.

    Role objects (SwapClient, SwapProvider) hold an engine and add the
    role-specific handshake messages on top of it.
    """

    def __init__(self, role: Role, keys: PartyKeys, ledger: LedgerClient,
                 scheme: SignatureScheme, config: SwapConfig = None,
                 ethereum: EthereumClient = None, clock: Callable[[], float] = time.time):
        self.role = role
        self.keys = keys
        self.ledger = ledger
        self.scheme = scheme
        self.config = config or SwapConfig()
        self.ethereum = ethereum
        self.clock = clock

        self.address = keys.address
        self.public_key = scheme.public_key(keys.signing_key)

        self.state = SwapState.EMPTY
        self.terms: Optional[SwapTerms] = None
        self.coordinator: Optional[SigningCoordinator] = None
        self.escrow: Optional[EscrowAccount] = None
        self.pubkey_hash: Optional[bytes] = None
        self.transactions: Optional[TransactionPlan] = None

    def __repr__(self):
        return f"SwapParty(role={self.role.name}, address={self.address}, state={self.state.name})"

    def require(self, *states: SwapState, action: str):
        if self.state not in states:
            expected = "/".join(s.name for s in states)
            raise InvalidStateError(f"Can't {action} in state {self.state.name} (expected {expected})")

    def _set_state(self, state: SwapState):
        log.info(f"{self.role.name.lower()} {self.address}: {self.state.name} -> {state.name}")
        self.state = state

    # =========================================================================
    # Handshake
    # =========================================================================

    async def prepare(self, terms: SwapTerms, counterparty_public_key: bytes,
                      counterparty_address: str,
                      remote_precommitments: Sequence[bytes] = None) -> Tuple[List[bytes], Optional[List[bytes]]]:
        """
        Bind terms, start a signer, derive the escrow and build the plan.

        Args:
            terms: Agreed swap terms
            counterparty_public_key: The other party's signing public key
            counterparty_address: The other party's ledger address
            remote_precommitments: Counterparty precommitments, if already known

        Returns:
            (local precommitments, local commitments or None)
        """
        self.require(SwapState.EMPTY, action="start a new swap")
        for amount in (terms.sell, terms.buy):
            if amount.amount <= 0 or not is_packable_amount(amount.amount):
                raise ValueError(f"Amount {amount.amount} {amount.token} can't be sent on the ledger")

        if self.role is Role.CLIENT:
            public_keys = [counterparty_public_key, self.public_key]
            client_address, provider_address = self.address, counterparty_address
        else:
            public_keys = [self.public_key, counterparty_public_key]
            client_address, provider_address = counterparty_address, self.address

        coordinator = SigningCoordinator(self.scheme, public_keys, self.role.position, self.keys.signing_key)
        precommitments = coordinator.precommitments()
        commitments = None
        if remote_precommitments is not None:
            commitments = coordinator.exchange_precommitments(precommitments, remote_precommitments)

        pubkey_hash = self.scheme.pubkey_hash(coordinator.aggregate_pubkey())
        escrow = derive_escrow_account(pubkey_hash, terms.recovery)

        # the escrow must have an account id before its transactions can be signed
        account = await self.ledger.get_state(escrow.address)
        if account.id is None:
            log.info(f"Creating escrow account {escrow.address} with a zero transfer")
            await self.transfer(escrow.address, terms.side(self.role).token, 0)
        else:
            log.debug(f"Escrow account {escrow.address} already has id {account.id}")

        plan = await build_transaction_plan(
            terms, client_address, provider_address, escrow.address, pubkey_hash, self.ledger
        )

        self.terms = terms
        self.coordinator = coordinator
        self.pubkey_hash = pubkey_hash
        self.escrow = escrow
        self.transactions = plan
        self._set_state(SwapState.PREPARED)
        return precommitments, commitments

    def sign_shares(self) -> List[bytes]:
        """Local signature shares for the whole plan (signing round)."""
        self.require(SwapState.PREPARED, action="sign transactions")
        return [
            self.coordinator.sign_share(tx.sign_bytes(), i)
            for i, tx in enumerate(self.transactions)
        ]

    def complete_signing(self, local_shares: Sequence[bytes], remote_shares: Sequence[bytes]):
        """
        Combine both parties' shares, verify every signature and attach them.

        Raises:
            ProtocolMismatchError: a share is missing or a signature doesn't verify
        """
        self.require(SwapState.PREPARED, action="combine signatures")
        if len(remote_shares) != TOTAL_TRANSACTIONS or len(local_shares) != TOTAL_TRANSACTIONS:
            raise ProtocolMismatchError(
                f"Expected {TOTAL_TRANSACTIONS} signature shares, got {len(remote_shares)}"
            )
        signatures = [
            self.coordinator.combine(tx.sign_bytes(), i, local_shares[i], remote_shares[i])
            for i, tx in enumerate(self.transactions)
        ]
        pub_key = to_hex(self.coordinator.aggregate_pubkey())
        self.transactions = tuple(
            tx.with_signature(TxSignature(pub_key=pub_key, signature=to_hex(sig)))
            for tx, sig in zip(self.transactions, signatures)
        )
        self._set_state(SwapState.SIGNED)

    # =========================================================================
    # Resume
    # =========================================================================

    async def load_swap(self, terms: SwapTerms, transactions: Sequence[LedgerTx]):
        """
        Resume a signed swap from saved terms and transactions.

        Verifies every signature and that the escrow address matches the
        terms before adopting anything. The state becomes DEPOSITED if the
        escrow already holds this party's side amount, SIGNED otherwise.
        """
        self.require(SwapState.EMPTY, action="load a swap")
        plan = tuple(transactions)
        if len(plan) != TOTAL_TRANSACTIONS:
            raise ProtocolMismatchError(f"Expected {TOTAL_TRANSACTIONS} transactions, got {len(plan)}")
        if any(tx.signature is None for tx in plan):
            raise ProtocolMismatchError("Saved transactions are not all signed")

        pub_keys = {tx.signature.pub_key.lower() for tx in plan}
        if len(pub_keys) != 1:
            raise ProtocolMismatchError("Saved transactions are signed by different keys")
        aggregate = from_hex(plan[KEY_REGISTRATION].signature.pub_key)
        for i, tx in enumerate(plan):
            if not self.scheme.verify(tx.sign_bytes(), from_hex(tx.signature.signature), aggregate):
                raise ProtocolMismatchError(f"Signature of transaction {i} does not verify")

        pubkey_hash = self.scheme.pubkey_hash(aggregate)
        if plan[KEY_REGISTRATION].new_pk_hash != format_pubkey_hash(pubkey_hash):
            raise ProtocolMismatchError("Key registration does not match the signing key")
        escrow = derive_escrow_account(pubkey_hash, terms.recovery)
        if any(tx.account.lower() != escrow.address.lower() for tx in plan):
            raise ProtocolMismatchError(f"Transactions are not sent from escrow {escrow.address}")
        _check_plan_matches(terms, plan, self.address, self.role)

        account = await self.ledger.get_state(escrow.address)
        side = terms.side(self.role)
        state = SwapState.DEPOSITED if account.balance(side.token) >= side.amount else SwapState.SIGNED

        self.terms = terms
        self.pubkey_hash = pubkey_hash
        self.escrow = escrow
        self.transactions = plan
        self._set_state(state)

    def signed_transactions(self) -> TransactionPlan:
        self.require(SwapState.SIGNED, SwapState.DEPOSITED, action="export signed transactions")
        return self.transactions

    def export_session(self) -> SwapSession:
        """Terms and signed transactions, for load_swap after a restart."""
        self.require(SwapState.SIGNED, SwapState.DEPOSITED, SwapState.FINALIZED, action="export the session")
        return SwapSession(terms=self.terms, transactions=self.transactions)

    # =========================================================================
    # Funds
    # =========================================================================

    def swap_address(self) -> str:
        if self.escrow is None:
            raise InvalidStateError("No escrow account - swap not prepared")
        return self.escrow.address

    def swap_salt(self) -> str:
        if self.escrow is None:
            raise InvalidStateError("No escrow account - swap not prepared")
        return self.escrow.salt

    def deposit_amount(self) -> int:
        """Amount this party deposits: side amount plus the fees it covers."""
        if self.transactions is None:
            raise InvalidStateError("No transaction plan - swap not prepared")
        needed = deposit_requirement(self.transactions, self.terms, self.role is Role.CLIENT)
        return next_packable_amount(needed)

    async def transfer(self, to: str, token: str, amount: int) -> str:
        """
        Transfer from this party's own ledger account and wait for the receipt.

        Returns:
            Ledger transaction hash
        """
        account = await self.ledger.get_state(self.address)
        if account.id is None:
            raise LedgerPreconditionError(f"Ledger account {self.address} does not exist")
        token_id = await self.ledger.resolve_token_id(token)
        fee = await self.ledger.get_tx_fee(TxKind.TRANSFER.fee_type, self.address, token)

        tx = LedgerTx(
            kind=TxKind.TRANSFER,
            account_id=account.id,
            account=self.address,
            to=to,
            token_id=token_id,
            amount=amount,
            fee=fee,
            fee_token_id=token_id,
            nonce=account.nonce,
        )
        signature = self.scheme.sign(self.keys.signing_key, tx.sign_bytes())
        tx = tx.with_signature(TxSignature(pub_key=to_hex(self.public_key), signature=to_hex(signature)))

        tx_hash = await self.ledger.submit_tx(tx.to_dict())
        receipt = await self.ledger.notify_transaction(
            tx_hash, self.config.confirmation, timeout=self.config.receipt_timeout
        )
        if receipt.success is False:
            raise LedgerPreconditionError(f"Transfer {tx_hash} failed: {receipt.fail_reason}")
        return tx_hash

    async def deposit_funds(self, source: DepositSource = DepositSource.LEDGER,
                            approve: bool = True) -> str:
        """
        Move this party's side amount plus fees into the escrow account.

        Args:
            source: LEDGER (own ledger account) or BASE_CHAIN (ledger main contract)
            approve: Approve the main contract for ERC20 deposits if needed

        Returns:
            Deposit transaction hash
        """
        self.require(SwapState.SIGNED, action="deposit funds")
        token = self.terms.side(self.role).token
        amount = self.deposit_amount()

        if source is DepositSource.LEDGER:
            tx_hash = await self.transfer(self.escrow.address, token, amount)
        else:
            if self.ethereum is None:
                raise SwapError("Base-chain deposit needs an Ethereum client")
            main_contract = self.config.ethereum.main_contract
            if not main_contract:
                main_contract = (await self.ledger.contract_address())["mainContract"]
            token_address = await self.ledger.resolve_token_address(token)
            tx_hash = await asyncio.to_thread(
                self.ethereum.deposit_to_ledger,
                main_contract,
                token_address,
                amount,
                self.escrow.address,
                self.keys.eth_private_key,
                approve,
            )

        log.info(f"Deposited {amount} {token} into escrow {self.escrow.address} ({source.value})")
        self._set_state(SwapState.DEPOSITED)
        return tx_hash

    def _check_funds(self, account, indices: Sequence[int]):
        balances = {
            self.transactions[PAY_SELLER].token_id: account.balance(self.terms.sell.token),
            self.transactions[PAY_BUYER].token_id: account.balance(self.terms.buy.token),
        }
        for token_id, needed in required_funds(self.transactions, indices).items():
            if balances.get(token_id, 0) < needed:
                raise LedgerPreconditionError(
                    f"Escrow {self.escrow.address} holds {balances.get(token_id, 0)} of token "
                    f"{token_id}, needs {needed}"
                )

    # =========================================================================
    # Settlement
    # =========================================================================

    async def finalize_swap(self) -> List[str]:
        """
        Submit key registration (if still needed) and both payouts as one batch.

        If the client already pushed its payout on its own, the provider
        submits just the seller payout, which stays valid after the timeout.

        Returns:
            Hashes of the submitted transactions
        """
        if self.role is Role.PROVIDER:
            self.require(SwapState.SIGNED, SwapState.DEPOSITED, action="finalize the swap")
        else:
            self.require(SwapState.DEPOSITED, action="finalize the swap")

        account = await self.ledger.get_state(self.escrow.address)
        seller_nonce = self.transactions[PAY_SELLER].nonce
        if self.role is Role.PROVIDER and account.nonce == seller_nonce and await self._executed(PAY_BUYER):
            log.info(f"Client payout already executed - collecting from escrow {self.escrow.address}")
            return await self._submit(account, [PAY_SELLER], "finalize")

        if self.clock() > self.terms.timeout:
            raise TimingViolationError("Swap timed out - it can only be cancelled")
        pending = [i for i in (PAY_BUYER, PAY_SELLER) if self.transactions[i].nonce >= account.nonce]
        if len(pending) < 2:
            raise LedgerPreconditionError(
                f"Escrow nonce is {account.nonce} - the swap was already settled"
            )

        if self.role is Role.PROVIDER:
            sell_id = self.transactions[PAY_SELLER].token_id
            client_indices = [KEY_REGISTRATION, PAY_SELLER] if account.nonce == 0 else [PAY_SELLER]
            client_side = required_funds(self.transactions, client_indices)[sell_id]
            if account.balance(self.terms.sell.token) < client_side:
                raise LedgerPreconditionError("Client has not deposited into the escrow yet")
            if self.state is SwapState.SIGNED:
                if account.balance(self.terms.buy.token) < self.terms.buy.amount:
                    await self.deposit_funds()
                else:
                    self._set_state(SwapState.DEPOSITED)
                account = await self.ledger.get_state(self.escrow.address)

        return await self._submit(account, pending, "finalize")

    async def cancel_swap(self) -> List[str]:
        """
        Submit this party's cancellation transactions after the timeout.

        The nonce burn is only pushed once the refund (never the buyer
        payout) has used nonce 1.

        Returns:
            Hashes of the submitted transactions
        """
        if self.terms is None:
            raise InvalidStateError("No swap to cancel")
        if self.clock() < self.terms.timeout:
            raise TimingViolationError("Too early to cancel the swap")
        self.require(SwapState.DEPOSITED, action="cancel the swap")

        account = await self.ledger.get_state(self.escrow.address)
        indices = self.role.cancel_indices
        pending = [i for i in indices if self.transactions[i].nonce >= account.nonce]
        if indices[-1] not in pending:
            raise LedgerPreconditionError(
                f"Escrow nonce is {account.nonce} - the swap was already settled"
            )
        if REFUND not in pending and not await self._executed(REFUND):
            raise LedgerPreconditionError(
                "Client payout executed instead of the refund - finalize to collect the payout"
            )
        return await self._submit(account, pending, "cancel")

    async def _executed(self, index: int) -> bool:
        receipt = await self.ledger.get_tx_receipt(self.transactions[index].tx_hash())
        return receipt.executed and bool(receipt.success)

    async def _submit(self, account, indices: List[int], action: str) -> List[str]:
        if account.nonce == 0:
            indices = [KEY_REGISTRATION] + list(indices)
        else:
            log.debug(f"Escrow key already registered (nonce {account.nonce})")
        self._check_funds(account, indices)

        batch = [self.transactions[i].to_dict() for i in indices]
        hashes = await self.ledger.submit_batch(batch)
        for tx_hash in hashes:
            receipt = await self.ledger.notify_transaction(
                tx_hash, self.config.confirmation, timeout=self.config.receipt_timeout
            )
            if receipt.success is False:
                raise LedgerPreconditionError(f"{action} transaction {tx_hash} failed: {receipt.fail_reason}")

        log.info(f"Swap {action} submitted from escrow {self.escrow.address}: txs {indices}")
        self._set_state(SwapState.FINALIZED)
        return hashes

    async def wait(self, action: str = None) -> WaitResult:
        """
        Wait for this party's payout transaction until the swap timeout.

        Never raises on timeout or ledger errors; returns TIMED_OUT so the
        caller can cancel, or FAILED with the error.
        """
        self.require(SwapState.DEPOSITED, action="wait for the swap")
        action = action or self.config.confirmation
        tx_hash = self.transactions[self.role.payout_index].tx_hash()
        remaining = self.terms.timeout - self.clock()
        if remaining <= 0:
            return WaitResult(WaitStatus.TIMED_OUT, error="Swap already timed out")

        try:
            receipt = await asyncio.wait_for(self.ledger.notify_transaction(tx_hash, action), remaining)
        except asyncio.TimeoutError:
            log.info(f"Payout {tx_hash} not seen before the timeout")
            return WaitResult(WaitStatus.TIMED_OUT, error="Timed out waiting for payout")
        except LedgerRPCError as e:
            log.warning(f"Ledger error while waiting for payout {tx_hash}: {e}")
            return WaitResult(WaitStatus.FAILED, error=str(e))

        if receipt.success is False:
            return WaitResult(WaitStatus.FAILED, receipt=receipt, error=receipt.fail_reason)
        self._set_state(SwapState.FINALIZED)
        return WaitResult(WaitStatus.FINALIZED, receipt=receipt)

    def reset(self, force: bool = False):
        """Drop the current swap. Refuses while funds are deposited unless forced."""
        if self.state is SwapState.DEPOSITED:
            if not force:
                raise InvalidStateError("Funds are deposited - finalize or cancel before resetting")
            log.warning(f"Force-resetting {self.role.name.lower()} with funds in escrow {self.escrow.address}")
        self.terms = None
        self.coordinator = None
        self.escrow = None
        self.pubkey_hash = None
        self.transactions = None
        self._set_state(SwapState.EMPTY)

    def status(self) -> Dict[str, Any]:
        return {
            "role": self.role.name.lower(),
            "address": self.address,
            "state": self.state.value,
            "escrow": self.escrow.address if self.escrow else None,
            "terms": self.terms.to_dict() if self.terms else None,
        }


def _check_plan_matches(terms: SwapTerms, plan: TransactionPlan, address: str, role: Role):
    """Saved plan must pay what the terms say, to this party."""
    payout = TxKind.WITHDRAW if terms.withdraw_mode is WithdrawMode.TO_BASE_CHAIN else TxKind.TRANSFER
    expected = [
        (TxKind.CHANGE_PUBKEY, 0),
        (TxKind.TRANSFER, 1),
        (payout, 2),
        (TxKind.TRANSFER, 1),
        (TxKind.TRANSFER, 2),
    ]
    if [(tx.kind, tx.nonce) for tx in plan] != expected:
        raise ProtocolMismatchError("Saved transactions don't have the swap structure")
    if plan[PAY_BUYER].amount != terms.buy.amount or plan[REFUND].amount != terms.sell.amount:
        raise ProtocolMismatchError("Saved transactions don't match the swap amounts")
    if plan[PAY_SELLER].amount != terms.sell.amount or plan[NONCE_BURN].amount != 0:
        raise ProtocolMismatchError("Saved transactions don't match the swap amounts")
    if plan[PAY_BUYER].valid_until != terms.timeout or plan[REFUND].valid_from != terms.timeout + 1:
        raise ProtocolMismatchError("Saved transactions don't match the swap timeout")
    own = plan[PAY_BUYER].to if role is Role.CLIENT else plan[PAY_SELLER].to
    if own.lower() != address.lower():
        raise ProtocolMismatchError(f"Saved transactions don't pay {address}")
