"""
Provider side of a swap.

The provider receives `terms.sell` and gives `terms.buy`. It opens the
handshake, hands out its signature shares first and deposits last, right
before finalizing, once the client's deposit is visible in the escrow.
"""

import logging
from typing import List, Optional

from ..core import Role, SwapTerms, DepositSource, SwapState, InvalidStateError
from ..chains.ledger import LedgerClient
from ..chains.ethereum import EthereumClient
from ..crypto.musig import SignatureScheme
from .messages import ClientCommitments, ProviderOffer, ProviderSignatures
from .party import PartyKeys, SwapConfig, SwapParty

log = logging.getLogger(__name__)


class SwapProvider:
    """Provider role over a SwapParty engine."""

    role = Role.PROVIDER

    def __init__(self, keys: PartyKeys, ledger: LedgerClient, scheme: SignatureScheme,
                 config: SwapConfig = None, ethereum: EthereumClient = None, clock=None):
        kwargs = {"clock": clock} if clock is not None else {}
        self.party = SwapParty(self.role, keys, ledger, scheme, config, ethereum, **kwargs)
        self._precommitments: Optional[List[bytes]] = None
        self._shares: Optional[List[bytes]] = None

    @property
    def state(self) -> SwapState:
        return self.party.state

    @property
    def address(self) -> str:
        return self.party.address

    @property
    def public_key(self) -> bytes:
        return self.party.public_key

    async def prepare_swap(self, terms: SwapTerms, client_public_key: bytes,
                           client_address: str) -> ProviderOffer:
        """Open a swap: bind terms, derive the escrow, return the offer."""
        precommitments, _ = await self.party.prepare(terms, client_public_key, client_address)
        self._precommitments = precommitments
        self._shares = None
        return ProviderOffer(
            public_key=self.public_key,
            address=self.address,
            precommitments=precommitments,
        )

    async def sign_swap(self, data: ClientCommitments) -> ProviderSignatures:
        """
        Run the commitment round and sign all transactions.

        The provider stays PREPARED until check_swap verified the client's
        shares. Signing twice in one attempt is refused.
        """
        self.party.require(SwapState.PREPARED, action="sign the swap")
        if self._shares is not None:
            raise InvalidStateError("Transactions already signed for this swap - reset to restart")

        coordinator = self.party.coordinator
        commitments = coordinator.exchange_precommitments(self._precommitments, data.precommitments)
        coordinator.exchange_commitments(data.commitments)
        shares = self.party.sign_shares()
        self._shares = shares
        return ProviderSignatures(commitments=commitments, shares=shares)

    async def check_swap(self, shares: List[bytes]):
        """Combine the client's shares with ours and verify every signature."""
        self.party.require(SwapState.PREPARED, action="check the swap")
        if self._shares is None:
            raise InvalidStateError("Transactions not signed yet - call sign_swap first")
        self.party.complete_signing(self._shares, shares)

    def reset(self, force: bool = False):
        self.party.reset(force)
        self._precommitments = None
        self._shares = None

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
