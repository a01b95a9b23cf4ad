"""
Client side of a swap.

The client sells `terms.sell` and receives `terms.buy`. It answers the
provider's offer, verifies the provider's signature shares before anything
is deposited, and deposits first.
"""

import logging
from typing import List

from ..core import Role, SwapTerms, DepositSource, SwapState
from ..chains.ledger import LedgerClient
from ..chains.ethereum import EthereumClient
from ..crypto.musig import SignatureScheme
from .messages import ClientCommitments, ProviderOffer, ProviderSignatures
from .party import PartyKeys, SwapConfig, SwapParty

log = logging.getLogger(__name__)


class SwapClient:
    """Client role over a SwapParty engine."""

    role = Role.CLIENT

    def __init__(self, keys: PartyKeys, ledger: LedgerClient, scheme: SignatureScheme,
                 config: SwapConfig = None, ethereum: EthereumClient = None, clock=None):
        kwargs = {"clock": clock} if clock is not None else {}
        self.party = SwapParty(self.role, keys, ledger, scheme, config, ethereum, **kwargs)

    @property
    def state(self) -> SwapState:
        return self.party.state

    @property
    def address(self) -> str:
        return self.party.address

    @property
    def public_key(self) -> bytes:
        return self.party.public_key

    async def prepare_swap(self, terms: SwapTerms, provider_public_key: bytes,
                           provider_address: str, provider_precommitments: List[bytes]) -> ClientCommitments:
        """
        Answer a provider offer.

        Runs the precommitment round, creates the escrow account if needed and
        builds the transaction plan.
        """
        precommitments, commitments = await self.party.prepare(
            terms, provider_public_key, provider_address, provider_precommitments
        )
        return ClientCommitments(precommitments=precommitments, commitments=commitments)

    async def accept_offer(self, terms: SwapTerms, offer: ProviderOffer) -> ClientCommitments:
        return await self.prepare_swap(terms, offer.public_key, offer.address, offer.precommitments)

    async def sign_swap(self, data: ProviderSignatures) -> List[bytes]:
        """
        Verify the provider's shares and sign all transactions.

        Returns:
            Client signature shares for the provider's check_swap

        Raises:
            ProtocolMismatchError: provider shares don't combine into valid
                signatures over this client's transactions
        """
        self.party.require(SwapState.PREPARED, action="sign the swap")
        self.party.coordinator.exchange_commitments(data.commitments)
        shares = self.party.sign_shares()
        self.party.complete_signing(shares, data.shares)
        return shares

    # =========================================================================
    # Delegated
    # =========================================================================

    async def deposit_funds(self, source: DepositSource = DepositSource.LEDGER, approve: bool = True) -> str:
        return await self.party.deposit_funds(source, approve)

    async def load_swap(self, terms, transactions):
        await self.party.load_swap(terms, transactions)

    async def wait(self, action: str = None):
        return await self.party.wait(action)

    async def finalize_swap(self) -> List[str]:
        return await self.party.finalize_swap()

    async def cancel_swap(self) -> List[str]:
        return await self.party.cancel_swap()

    def reset(self, force: bool = False):
        self.party.reset(force)

    def signed_transactions(self):
        return self.party.signed_transactions()

    def export_session(self):
        return self.party.export_session()

    def swap_address(self) -> str:
        return self.party.swap_address()

    def swap_salt(self) -> str:
        return self.party.swap_salt()

    def deposit_amount(self) -> int:
        return self.party.deposit_amount()
