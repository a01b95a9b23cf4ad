"""
Base-chain (Ethereum) client for zkswap.

Used for:
- Depositing into the ledger network through its main contract
- Balance queries
- Sending the rescue-path contract calls (see escrow/rescue.py)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from eth_account import Account
from web3 import Web3

log = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

# Ledger main contract (deposits only)
MAIN_CONTRACT_ABI = [
    {
        "name": "depositETH",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [{"name": "_zkSyncAddress", "type": "address"}],
        "outputs": []
    },
    {
        "name": "depositERC20",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_token", "type": "address"},
            {"name": "_amount", "type": "uint104"},
            {"name": "_zkSyncAddress", "type": "address"}
        ],
        "outputs": []
    }
]

ERC20_ABI = [
    {
        "name": "approve",
        "type": "function",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "outputs": [{"name": "", "type": "bool"}]
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"}
        ],
        "outputs": [{"name": "", "type": "uint256"}]
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}]
    }
]

# RPC endpoints
RPC_ENDPOINTS = {
    "localhost": "http://127.0.0.1:8545",
    "rinkeby": "https://rinkeby.infura.io/v3/",
}


class BaseChainError(RuntimeError):
    """Base-chain transaction failed or could not be sent."""


@dataclass
class EthereumConfig:
    """Base-chain configuration."""
    network: str = "localhost"
    rpc_url: str = ""
    chain_id: int = 9
    main_contract: str = ""   # ledger main contract; queried from the ledger if empty
    gas_price_multiplier: float = 1.1
    receipt_timeout: int = 120


def address_from_key(private_key: str) -> str:
    """Checksummed address controlled by a private key."""
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return Account.from_key(private_key).address


class EthereumClient:
    """
    Base-chain client built on web3.py.

    Calls are synchronous; async callers run them in a worker thread.
    """

    def __init__(self, config: EthereumConfig = None, web3: Web3 = None):
        self.config = config or EthereumConfig()
        self.rpc_url = self.config.rpc_url or RPC_ENDPOINTS.get(self.config.network, "")
        self._web3 = web3

    @property
    def web3(self) -> Web3:
        """Lazy-load web3 instance."""
        if self._web3 is None:
            self._web3 = Web3(Web3.HTTPProvider(self.rpc_url))
        return self._web3

    # =========================================================================
    # Queries
    # =========================================================================

    def get_balance(self, address: str) -> int:
        """ETH balance in wei."""
        return self.web3.eth.get_balance(Web3.to_checksum_address(address))

    def get_token_balance(self, token_address: str, address: str) -> int:
        """ERC20 balance in the token's smallest unit (ETH if token is zero address)."""
        if token_address.lower() == ZERO_ADDRESS:
            return self.get_balance(address)
        token = self.web3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        return token.functions.balanceOf(Web3.to_checksum_address(address)).call()

    def is_contract(self, address: str) -> bool:
        code = self.web3.eth.get_code(Web3.to_checksum_address(address))
        return len(code) > 0

    # =========================================================================
    # Transactions
    # =========================================================================

    def transact(self, function, private_key: str, gas: int = 300000, value: int = 0) -> Dict[str, Any]:
        """
        Build, sign and send a contract call; wait for the receipt.

        Returns:
            Transaction receipt (raises BaseChainError if it reverted)
        """
        w3 = self.web3
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        account = Account.from_key(private_key)

        tx = function.build_transaction({
            "from": account.address,
            "nonce": w3.eth.get_transaction_count(account.address, "pending"),
            "gas": gas,
            "gasPrice": int(w3.eth.gas_price * self.config.gas_price_multiplier),
            "chainId": self.config.chain_id,
            "value": value,
        })
        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        log.info(f"Base-chain tx sent: {tx_hash.hex()}")

        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.config.receipt_timeout)
        if receipt["status"] != 1:
            raise BaseChainError(f"Transaction reverted: {tx_hash.hex()}")
        return receipt

    def deposit_to_ledger(self, main_contract: str, token_address: str, amount: int,
                          ledger_address: str, private_key: str,
                          approve: bool = True) -> str:
        """
        Deposit funds into a ledger account through the main contract.

        Args:
            main_contract: Ledger main contract address
            token_address: ERC20 address (zero address for ETH)
            amount: Amount in the token's smallest unit
            ledger_address: Receiving ledger account
            private_key: Depositor's base-chain key
            approve: Approve the main contract first if allowance is short

        Returns:
            Deposit transaction hash
        """
        w3 = self.web3
        main = w3.eth.contract(address=Web3.to_checksum_address(main_contract), abi=MAIN_CONTRACT_ABI)
        recipient = Web3.to_checksum_address(ledger_address)

        if token_address.lower() == ZERO_ADDRESS:
            receipt = self.transact(main.functions.depositETH(recipient), private_key, gas=200000, value=amount)
        else:
            token = w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
            sender = address_from_key(private_key)
            allowance = token.functions.allowance(sender, main.address).call()
            if allowance < amount:
                if not approve:
                    raise BaseChainError(f"Allowance {allowance} below deposit amount {amount}")
                log.info(f"Approving {token_address} for the ledger main contract...")
                self.transact(token.functions.approve(main.address, 2**256 - 1), private_key, gas=100000)
            receipt = self.transact(
                main.functions.depositERC20(Web3.to_checksum_address(token_address), amount, recipient),
                private_key,
                gas=300000,
            )

        tx_hash = receipt["transactionHash"]
        log.info(f"Deposited {amount} of {token_address} to ledger account {ledger_address}")
        return tx_hash.hex() if hasattr(tx_hash, "hex") else str(tx_hash)
