"""
Swap transaction plan.

Every swap is settled by exactly five transactions from the escrow account,
all signed during the handshake before anyone deposits:

    #  kind           nonce  valid          purpose
    0  ChangePubKey   0      [0, MAX]       register the aggregate key (CREATE2 auth)
    1  Transfer buy   1      [0, T]         pay the client
    2  Transfer/Withdraw sell 2 [0, MAX]    pay the provider
    3  Transfer sell  1      [T+1, MAX]     refund the client
    4  Transfer 0 buy 2      [T+1, MAX]     burn nonce 2 after the timeout

Transactions 1/3 and 2/4 share nonces. Before T only 1 and 2 are time-valid,
after T only 3 and 4. Whichever pair executes first consumes the nonces and
makes the other pair permanently invalid, so a swap either completes or
cancels, never both.
"""

import logging
from typing import List, Tuple

from ..core import (
    SwapTerms, WithdrawMode, LedgerPreconditionError, MAX_TIMESTAMP,
    KEY_REGISTRATION, PAY_BUYER, PAY_SELLER, REFUND, NONCE_BURN, TOTAL_TRANSACTIONS,
)
from ..chains.txs import LedgerTx, TxKind, format_pubkey_hash

log = logging.getLogger(__name__)

TransactionPlan = Tuple[LedgerTx, ...]


async def get_fees(terms: SwapTerms, provider_address: str, ledger) -> dict:
    """Fee quotes for every kind of transaction in the plan."""
    return {
        "transfer_sold": await ledger.get_tx_fee(TxKind.TRANSFER.fee_type, provider_address, terms.sell.token),
        "transfer_bought": await ledger.get_tx_fee(TxKind.TRANSFER.fee_type, provider_address, terms.buy.token),
        "change_pubkey": await ledger.get_tx_fee(TxKind.CHANGE_PUBKEY.fee_type, provider_address, terms.sell.token),
        "withdraw": await ledger.get_tx_fee(TxKind.WITHDRAW.fee_type, provider_address, terms.sell.token),
    }


async def build_transaction_plan(
    terms: SwapTerms,
    client_address: str,
    provider_address: str,
    escrow_address: str,
    pubkey_hash: bytes,
    ledger,
) -> TransactionPlan:
    """
    Build the five unsigned swap transactions.

    Args:
        terms: Swap terms shared by both parties
        client_address: Client's ledger address
        provider_address: Provider's ledger address
        escrow_address: Escrow account address
        pubkey_hash: 20-byte hash of the aggregate public key
        ledger: Ledger client (fees, token ids, account state)

    Raises:
        LedgerPreconditionError: escrow account not yet known to the ledger
    """
    fees = await get_fees(terms, provider_address, ledger)

    escrow = await ledger.get_state(escrow_address)
    if escrow.id is None:
        raise LedgerPreconditionError(
            f"Escrow account {escrow_address} not yet known to ledger - can't build transactions"
        )
    buy_token_id = await ledger.resolve_token_id(terms.buy.token)
    sell_token_id = await ledger.resolve_token_id(terms.sell.token)

    key_registration = LedgerTx(
        kind=TxKind.CHANGE_PUBKEY,
        account_id=escrow.id,
        account=escrow_address,
        new_pk_hash=format_pubkey_hash(pubkey_hash),
        nonce=0,
        fee_token_id=sell_token_id,
        fee=fees["change_pubkey"],
        valid_from=0,
        valid_until=MAX_TIMESTAMP,
        eth_auth={
            "type": "CREATE2",
            "creatorAddress": terms.recovery.creator,
            "saltArg": terms.recovery.salt,
            "codeHash": terms.recovery.code_hash,
        },
    )

    pay_buyer = LedgerTx(
        kind=TxKind.TRANSFER,
        account_id=escrow.id,
        account=escrow_address,
        to=client_address,
        token_id=buy_token_id,
        amount=terms.buy.amount,
        fee=fees["transfer_bought"],
        fee_token_id=buy_token_id,
        nonce=1,
        valid_from=0,
        valid_until=terms.timeout,
    )

    if terms.withdraw_mode is WithdrawMode.TO_BASE_CHAIN:
        pay_seller = LedgerTx(
            kind=TxKind.WITHDRAW,
            account_id=escrow.id,
            account=escrow_address,
            to=provider_address,
            token_id=sell_token_id,
            amount=terms.sell.amount,
            fee=fees["withdraw"],
            fee_token_id=sell_token_id,
            nonce=2,
            valid_from=0,
            valid_until=MAX_TIMESTAMP,
        )
    else:
        pay_seller = LedgerTx(
            kind=TxKind.TRANSFER,
            account_id=escrow.id,
            account=escrow_address,
            to=provider_address,
            token_id=sell_token_id,
            amount=terms.sell.amount,
            fee=fees["transfer_sold"],
            fee_token_id=sell_token_id,
            nonce=2,
            valid_from=0,
            valid_until=MAX_TIMESTAMP,
        )

    refund = LedgerTx(
        kind=TxKind.TRANSFER,
        account_id=escrow.id,
        account=escrow_address,
        to=client_address,
        token_id=sell_token_id,
        amount=terms.sell.amount,
        fee=fees["transfer_sold"],
        fee_token_id=sell_token_id,
        nonce=1,
        valid_from=terms.timeout + 1,
        valid_until=MAX_TIMESTAMP,
    )

    nonce_burn = LedgerTx(
        kind=TxKind.TRANSFER,
        account_id=escrow.id,
        account=escrow_address,
        to=provider_address,
        token_id=buy_token_id,
        amount=0,
        fee=fees["transfer_bought"],
        fee_token_id=buy_token_id,
        nonce=2,
        valid_from=terms.timeout + 1,
        valid_until=MAX_TIMESTAMP,
    )

    plan = (key_registration, pay_buyer, pay_seller, refund, nonce_burn)
    assert len(plan) == TOTAL_TRANSACTIONS
    log.debug(f"Built swap plan for escrow {escrow_address} (account id {escrow.id})")
    return plan


def required_funds(plan: TransactionPlan, indices: List[int]) -> dict:
    """Amount plus fees per token id needed to execute the given transactions."""
    needed: dict = {}
    for i in indices:
        tx = plan[i]
        if tx.token_id is not None:
            needed[tx.token_id] = needed.get(tx.token_id, 0) + tx.amount
        needed[tx.fee_token_id] = needed.get(tx.fee_token_id, 0) + tx.fee
    return needed


def deposit_requirement(plan: TransactionPlan, terms: SwapTerms, client_side: bool) -> int:
    """
    Amount a party must deposit: its side amount plus the fees the plan
    charges in that token on the paths it pays for.

    Client (sell token): key registration + the larger of payout/refund fee.
    Provider (buy token): the larger of payout/nonce-burn fee.
    """
    if client_side:
        return (
            terms.sell.amount
            + plan[KEY_REGISTRATION].fee
            + max(plan[PAY_SELLER].fee, plan[REFUND].fee)
        )
    return terms.buy.amount + max(plan[PAY_BUYER].fee, plan[NONCE_BURN].fee)
