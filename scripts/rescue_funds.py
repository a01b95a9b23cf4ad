#!/usr/bin/env python3
"""
zkswap rescue - reclaim swap funds on the base chain

Only for the case where the ledger halted, entered recovery mode, and the
escrow account's balances were exited to its base-chain address. Deploys
the rescue contract at the escrow address (if nobody did yet) and withdraws
this party's side.

Usage:
    ZKSWAP_ETH_PRIVATE_KEY=0x... python3 scripts/rescue_funds.py \\
        --session swap.json --role client \\
        --sell-token 0x0000000000000000000000000000000000000000 \\
        --buy-token 0x... --main-contract 0x...
    python3 scripts/rescue_funds.py --session swap.json --status ...
"""

import argparse
import dataclasses
import os
import sys
from pathlib import Path

from zkswap.core import Role
from zkswap.chains.ethereum import EthereumClient
from zkswap.escrow.rescue import EscrowRescuer, session_rescue_inputs
from zkswap.swap.party import SwapConfig, SwapSession


def load_session(path: str) -> SwapSession:
    return SwapSession.from_json(Path(path).read_text())


def main():
    config = SwapConfig.from_env()

    parser = argparse.ArgumentParser(
        description="zkswap rescue - withdraw swap funds from the escrow's base-chain address"
    )
    parser.add_argument("--session", type=str, required=True,
                        help="Saved swap session (SwapSession JSON)")
    parser.add_argument("--role", choices=["client", "provider"],
                        help="Which side to withdraw")
    parser.add_argument("--sell-token", type=str, required=True,
                        help="Base-chain address of the sell token (zero address for ETH)")
    parser.add_argument("--buy-token", type=str, required=True,
                        help="Base-chain address of the buy token (zero address for ETH)")
    parser.add_argument("--main-contract", type=str, default=config.ethereum.main_contract,
                        help="Ledger main contract address (default: ZKSWAP_MAIN_CONTRACT)")
    parser.add_argument("--rpc-url", type=str, default=config.ethereum.rpc_url,
                        help="Base-chain JSON-RPC URL (default: ZKSWAP_ETH_RPC_URL)")
    parser.add_argument("--chain-id", type=int, default=config.ethereum.chain_id)
    parser.add_argument("--status", action="store_true",
                        help="Only show the escrow address, whether it is deployed and its balances")
    args = parser.parse_args()

    if not args.main_contract:
        parser.error("--main-contract (or ZKSWAP_MAIN_CONTRACT) is required")

    session = load_session(args.session)
    recovery = session.terms.recovery
    escrow_address, pubkey_hash, constructor_args = session_rescue_inputs(
        session.terms, session.transactions, args.sell_token, args.buy_token, args.main_contract
    )

    ethereum_config = dataclasses.replace(config.ethereum, rpc_url=args.rpc_url, chain_id=args.chain_id)
    rescuer = EscrowRescuer(EthereumClient(ethereum_config), config.deployer_address, config.rescuer_bytecode)

    print(f"Escrow address: {escrow_address}")
    print(f"Deployer:       {recovery.creator}")
    print(f"Salt:           {recovery.salt}")

    error = rescuer.check_inputs(escrow_address, pubkey_hash, recovery, constructor_args)
    if error:
        print(f"ERROR: {error}")
        sys.exit(1)

    if args.status:
        print(f"Deployed:       {rescuer.is_deployed(escrow_address)}")
        balances = rescuer.escrow_balances(escrow_address, [args.sell_token, args.buy_token])
        for token, balance in balances.items():
            print(f"Balance {token}: {balance}")
        return

    if not args.role:
        parser.print_help()
        sys.exit(1)

    private_key = os.environ.get("ZKSWAP_ETH_PRIVATE_KEY", "")
    if not private_key:
        print("ERROR: ZKSWAP_ETH_PRIVATE_KEY not set")
        sys.exit(1)

    role = Role.CLIENT if args.role == "client" else Role.PROVIDER
    result = rescuer.rescue(escrow_address, pubkey_hash, recovery, constructor_args, role, private_key)
    if not result.success:
        print(f"ERROR: {result.error}")
        sys.exit(1)
    print(f"Withdrawn: {result.tx_hash}")


if __name__ == "__main__":
    main()
