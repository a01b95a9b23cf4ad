"""
Base-chain rescue path.

If the ledger halts and enters recovery mode, pending balances of the escrow
account are exited to the escrow's address on the base chain. Nobody holds a
key for that address, but the deployer contract can create the rescue
contract there (same CREATE2 creator, salt and code hash as the escrow). The
rescue contract then pays each party back its own side:

    deploy(salt, client, provider, sellToken, buyToken, timeout, mainContract)
    clientWithdraw()     client takes the sell token
    providerWithdraw()   provider takes the buy token
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from web3 import Web3

from ..core import Role, RecoveryParams, SwapTerms, KEY_REGISTRATION, PAY_BUYER, PAY_SELLER, from_hex
from ..chains.ethereum import EthereumClient
from ..chains.txs import LedgerTx, serialize_pubkey_hash
from .create2 import base_chain_address, derive_escrow_account, rescue_code_hash, rescue_constructor_args

log = logging.getLogger(__name__)

DEPLOYER_ABI = [
    {
        "name": "deploy",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "salt", "type": "bytes32"},
            {"name": "client", "type": "address"},
            {"name": "provider", "type": "address"},
            {"name": "sellToken", "type": "address"},
            {"name": "buyToken", "type": "address"},
            {"name": "timeout", "type": "uint64"},
            {"name": "syncAddress", "type": "address"}
        ],
        "outputs": []
    }
]

RESCUER_ABI = [
    {
        "name": "clientWithdraw",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": []
    },
    {
        "name": "providerWithdraw",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": []
    }
]


@dataclass
class RescueResult:
    """Result of a rescue-path call."""
    success: bool
    address: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None


def session_rescue_inputs(terms: SwapTerms, transactions: Sequence[LedgerTx],
                          sell_token_address: str, buy_token_address: str,
                          main_contract: str) -> Tuple[str, bytes, list]:
    """
    Rescue inputs from a saved swap.

    Returns:
        (escrow address the transactions are sent from,
         aggregate pubkey hash from the key registration,
         rescue constructor args)
    """
    pubkey_hash = serialize_pubkey_hash(transactions[KEY_REGISTRATION].new_pk_hash)
    args = rescue_constructor_args(
        client=transactions[PAY_BUYER].to,
        provider=transactions[PAY_SELLER].to,
        sell_token_address=sell_token_address,
        buy_token_address=buy_token_address,
        timeout=terms.timeout,
        main_contract=main_contract,
    )
    return transactions[KEY_REGISTRATION].account, pubkey_hash, args


class EscrowRescuer:
    """Deploys the rescue contract at the escrow address and withdraws from it."""

    def __init__(self, ethereum: EthereumClient, deployer_address: str = "", rescuer_bytecode: str = ""):
        self.ethereum = ethereum
        self.deployer_address = deployer_address
        self.rescuer_bytecode = rescuer_bytecode

    def is_deployed(self, address: str) -> bool:
        return self.ethereum.is_contract(address)

    def escrow_balances(self, address: str, token_addresses: Sequence[str]) -> Dict[str, int]:
        """Base-chain balances held at the escrow address, per token address."""
        return {token: self.ethereum.get_token_balance(token, address) for token in token_addresses}

    def deploy_escrow(self, deployer: str, salt: str, args: Sequence, private_key: str) -> RescueResult:
        """
        Deploy the rescue contract through the deployer.

        Args:
            deployer: Deployer contract address (the CREATE2 creator)
            salt: Derived escrow salt (EscrowAccount.salt)
            args: Rescue constructor args (see create2.rescue_constructor_args)
            private_key: Caller's base-chain key (either party)
        """
        try:
            w3 = self.ethereum.web3
            contract = w3.eth.contract(address=Web3.to_checksum_address(deployer), abi=DEPLOYER_ABI)
            receipt = self.ethereum.transact(
                contract.functions.deploy(from_hex(salt), *args),
                private_key,
                gas=1500000,
            )
            tx_hash = receipt["transactionHash"].hex()
            log.info(f"Rescue contract deployed via {deployer}: {tx_hash}")
            return RescueResult(success=True, tx_hash=tx_hash)

        except Exception as e:
            log.exception("Failed to deploy rescue contract")
            return RescueResult(success=False, error=str(e))

    def withdraw(self, escrow_address: str, role: Role, private_key: str) -> RescueResult:
        """Withdraw this role's side from a deployed rescue contract."""
        try:
            w3 = self.ethereum.web3
            contract = w3.eth.contract(address=Web3.to_checksum_address(escrow_address), abi=RESCUER_ABI)
            if role is Role.CLIENT:
                function = contract.functions.clientWithdraw()
            else:
                function = contract.functions.providerWithdraw()
            receipt = self.ethereum.transact(function, private_key, gas=200000)
            tx_hash = receipt["transactionHash"].hex()
            log.info(f"{role.name.lower()} withdrew from rescue contract {escrow_address}: {tx_hash}")
            return RescueResult(success=True, address=escrow_address, tx_hash=tx_hash)

        except Exception as e:
            log.exception(f"Failed to withdraw from rescue contract {escrow_address}")
            return RescueResult(success=False, address=escrow_address, error=str(e))

    def check_inputs(self, escrow_address: str, pubkey_hash: bytes, recovery: RecoveryParams,
                     args: Sequence) -> Optional[str]:
        """Reason the inputs can't reach `escrow_address`, or None if they can."""
        if self.deployer_address and self.deployer_address.lower() != recovery.creator.lower():
            return f"Swap deployer {recovery.creator} is not the configured deployer {self.deployer_address}"
        if self.rescuer_bytecode:
            if rescue_code_hash(self.rescuer_bytecode, args).lower() != recovery.code_hash.lower():
                return "Rescue contract arguments don't match the swap's code hash"
        escrow = derive_escrow_account(pubkey_hash, recovery)
        if escrow.address.lower() != escrow_address.lower():
            return f"Key hash and recovery data derive {escrow.address}, not escrow {escrow_address}"
        return None

    def rescue(self, escrow_address: str, pubkey_hash: bytes, recovery: RecoveryParams,
               args: Sequence, role: Role, private_key: str) -> RescueResult:
        """
        Full rescue: deploy at the escrow address if needed, then withdraw.

        The escrow is re-derived from the aggregate key hash and the recovery
        data, so only a deployment that lands on `escrow_address` is attempted.
        """
        error = self.check_inputs(escrow_address, pubkey_hash, recovery, args)
        if error:
            return RescueResult(success=False, address=escrow_address, error=error)

        escrow = derive_escrow_account(pubkey_hash, recovery)
        address = base_chain_address(escrow, recovery)
        if not self.is_deployed(address):
            result = self.deploy_escrow(recovery.creator, escrow.salt, args, private_key)
            if not result.success:
                return result
            if not self.is_deployed(address):
                return RescueResult(success=False, address=address, error="Rescue contract not at escrow address")
        else:
            log.debug(f"Rescue contract already deployed at {address}")

        return self.withdraw(address, role, private_key)
