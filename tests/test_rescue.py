#!/usr/bin/env python3
"""
Rescue path and base-chain client tests (web3 calls mocked)
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from zkswap.core import Role, RecoveryParams
from zkswap.chains.ethereum import EthereumClient, BaseChainError, address_from_key, ZERO_ADDRESS
from zkswap.escrow.create2 import derive_escrow_account, recovery_params, rescue_code_hash, rescue_constructor_args
from zkswap.escrow.rescue import EscrowRescuer, session_rescue_inputs

from mock_ledger import SwapFixture, DAI_ADDRESS, MAIN_CONTRACT, RESCUER_BYTECODE

DEPLOYER = "0x" + "de" * 20
SALT = "0x" + "01" * 32
BYTECODE = "0x6080604052348015600f57600080fd5b50"
PRIVATE_KEY = "0x" + "11" * 32
TOKEN = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
MAIN = "0x" + "5a" * 20


class TestEscrowRescuer(unittest.TestCase):

    def setUp(self):
        self.args = rescue_constructor_args(
            "0x" + "11" * 20, "0x" + "22" * 20, ZERO_ADDRESS, TOKEN, 1700000000, MAIN,
        )
        self.recovery = recovery_params(DEPLOYER, SALT, BYTECODE, self.args)
        self.pubkey_hash = b"\x42" * 20
        self.escrow = derive_escrow_account(self.pubkey_hash, self.recovery)

        self.ethereum = MagicMock()
        self.ethereum.transact.return_value = {"transactionHash": b"\xaa" * 32, "status": 1}
        self.rescuer = EscrowRescuer(self.ethereum, DEPLOYER, BYTECODE)

    def rescue(self, role=Role.CLIENT, pubkey_hash=None, recovery=None, args=None):
        return self.rescuer.rescue(
            self.escrow.address, pubkey_hash or self.pubkey_hash, recovery or self.recovery,
            args or self.args, role, PRIVATE_KEY,
        )

    def test_deploys_then_withdraws(self):
        self.ethereum.is_contract.side_effect = [False, True]
        result = self.rescue()

        self.assertTrue(result.success)
        self.assertEqual(result.address, self.escrow.address)
        self.assertEqual(result.tx_hash, "aa" * 32)
        self.assertEqual(self.ethereum.transact.call_count, 2)

        contract = self.ethereum.web3.eth.contract.return_value
        contract.functions.deploy.assert_called_once()
        self.assertEqual(contract.functions.deploy.call_args[0][0], bytes.fromhex(self.escrow.salt[2:]))
        contract.functions.clientWithdraw.assert_called_once()
        contract.functions.providerWithdraw.assert_not_called()

    def test_skips_deploy_when_present(self):
        self.ethereum.is_contract.return_value = True
        result = self.rescue(Role.PROVIDER)

        self.assertTrue(result.success)
        self.assertEqual(self.ethereum.transact.call_count, 1)
        contract = self.ethereum.web3.eth.contract.return_value
        contract.functions.providerWithdraw.assert_called_once()
        contract.functions.deploy.assert_not_called()

    def test_deploy_failure_reported(self):
        self.ethereum.is_contract.return_value = False
        self.ethereum.transact.side_effect = BaseChainError("Transaction reverted")
        with self.assertLogs("zkswap.escrow.rescue", level="ERROR"):
            result = self.rescue()
        self.assertFalse(result.success)
        self.assertIn("reverted", result.error)

    def test_wrong_escrow_refused(self):
        other = RecoveryParams("0x" + "ef" * 20, SALT, self.recovery.code_hash)
        result = EscrowRescuer(self.ethereum).rescue(
            self.escrow.address, self.pubkey_hash, other, self.args, Role.CLIENT, PRIVATE_KEY
        )
        self.assertFalse(result.success)
        self.ethereum.transact.assert_not_called()

    def test_wrong_key_hash_refused(self):
        # Same recovery data, different aggregate key: a different escrow
        result = self.rescue(pubkey_hash=b"\x43" * 20)
        self.assertFalse(result.success)
        self.assertIn(self.escrow.address, result.error)
        self.ethereum.transact.assert_not_called()
        self.ethereum.is_contract.assert_not_called()

    def test_other_deployer_refused(self):
        rescuer = EscrowRescuer(self.ethereum, "0x" + "ef" * 20, BYTECODE)
        result = rescuer.rescue(self.escrow.address, self.pubkey_hash, self.recovery, self.args,
                                Role.CLIENT, PRIVATE_KEY)
        self.assertFalse(result.success)
        self.assertIn("deployer", result.error)
        self.ethereum.transact.assert_not_called()

    def test_mismatched_constructor_args_refused(self):
        args = rescue_constructor_args(
            "0x" + "11" * 20, "0x" + "22" * 20, ZERO_ADDRESS, TOKEN, 1700000001, MAIN,
        )
        result = self.rescue(args=args)
        self.assertFalse(result.success)
        self.assertIn("code hash", result.error)
        self.ethereum.transact.assert_not_called()

    def test_escrow_balances(self):
        self.ethereum.get_token_balance.side_effect = lambda token, address: 7 if token == TOKEN else 3
        balances = self.rescuer.escrow_balances(self.escrow.address, [ZERO_ADDRESS, TOKEN])
        self.assertEqual(balances, {ZERO_ADDRESS: 3, TOKEN: 7})
        self.ethereum.get_token_balance.assert_any_call(TOKEN, self.escrow.address)


class TestSessionRescueInputs(unittest.IsolatedAsyncioTestCase):
    """Rescue inputs rebuilt from a saved session reach the swap's escrow"""

    async def test_matches_escrow(self):
        f = SwapFixture()
        await f.handshake()
        session = f.client.export_session()

        address, pubkey_hash, args = session_rescue_inputs(
            session.terms, session.transactions, ZERO_ADDRESS, DAI_ADDRESS, MAIN_CONTRACT
        )
        self.assertEqual(address, f.client.swap_address())
        self.assertEqual(pubkey_hash, f.client.party.pubkey_hash)
        self.assertEqual(rescue_code_hash(RESCUER_BYTECODE, args), f.terms.recovery.code_hash)

        rescuer = EscrowRescuer(MagicMock(), DEPLOYER, RESCUER_BYTECODE)
        self.assertIsNone(rescuer.check_inputs(address, pubkey_hash, session.terms.recovery, args))

    async def test_wrong_tokens_detected(self):
        f = SwapFixture()
        await f.handshake()
        session = f.client.export_session()

        address, pubkey_hash, args = session_rescue_inputs(
            session.terms, session.transactions, DAI_ADDRESS, ZERO_ADDRESS, MAIN_CONTRACT
        )
        rescuer = EscrowRescuer(MagicMock(), DEPLOYER, RESCUER_BYTECODE)
        self.assertIsNotNone(rescuer.check_inputs(address, pubkey_hash, session.terms.recovery, args))


class TestLedgerDeposit(unittest.TestCase):

    def setUp(self):
        self.client = EthereumClient(web3=MagicMock())
        self.receipt = {"transactionHash": b"\xbb" * 32, "status": 1}

    def test_eth_deposit(self):
        with patch.object(EthereumClient, "transact", return_value=self.receipt) as transact:
            tx_hash = self.client.deposit_to_ledger(MAIN, ZERO_ADDRESS, 10**18, "0x" + "33" * 20, PRIVATE_KEY)
        self.assertEqual(tx_hash, "bb" * 32)
        self.assertEqual(transact.call_args.kwargs["value"], 10**18)

    def test_erc20_deposit_approves_first(self):
        token = self.client.web3.eth.contract.return_value
        token.functions.allowance.return_value.call.return_value = 0
        with patch.object(EthereumClient, "transact", return_value=self.receipt) as transact:
            self.client.deposit_to_ledger(MAIN, TOKEN, 10**18, "0x" + "33" * 20, PRIVATE_KEY)
        self.assertEqual(transact.call_count, 2)
        token.functions.approve.assert_called_once()

    def test_erc20_deposit_without_approval(self):
        token = self.client.web3.eth.contract.return_value
        token.functions.allowance.return_value.call.return_value = 0
        with patch.object(EthereumClient, "transact", return_value=self.receipt):
            with self.assertRaises(BaseChainError):
                self.client.deposit_to_ledger(MAIN, TOKEN, 10**18, "0x" + "33" * 20, PRIVATE_KEY, approve=False)

    def test_token_balance(self):
        w3 = self.client.web3
        w3.eth.get_balance.return_value = 5
        w3.eth.contract.return_value.functions.balanceOf.return_value.call.return_value = 9
        self.assertEqual(self.client.get_token_balance(ZERO_ADDRESS, "0x" + "33" * 20), 5)
        self.assertEqual(self.client.get_token_balance(TOKEN, "0x" + "33" * 20), 9)

    def test_address_from_key(self):
        self.assertEqual(address_from_key(PRIVATE_KEY), address_from_key(PRIVATE_KEY[2:]))
        self.assertTrue(address_from_key(PRIVATE_KEY).startswith("0x"))


if __name__ == "__main__":
    unittest.main()
