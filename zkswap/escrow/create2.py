"""
Escrow address resolution.

The escrow account is a ledger account whose address is a CREATE2 address:

    salt    = keccak256(salt_arg || pubkey_hash)
    address = keccak256(0xff || creator || salt || code_hash)[12:]

The ledger and the base chain use the same formula, so the escrow account's
address is also the address the deployer contract gets when it deploys the
rescue contract with the same salt. That equality is what lets either party
redeploy the escrow on the base chain and reclaim exited funds if the ledger
halts.

code_hash = keccak256(rescue_bytecode || abi.encode(client, provider,
sell_token, buy_token, uint64 timeout, ledger_main_contract))
"""

from dataclasses import dataclass
from typing import Sequence

from eth_abi import encode
from web3 import Web3

from ..core import RecoveryParams, from_hex, to_hex

RESCUE_CONSTRUCTOR_TYPES = ["address", "address", "address", "address", "uint64", "address"]


@dataclass(frozen=True)
class EscrowAccount:
    """Jointly controlled escrow account."""
    address: str   # checksummed, same on the ledger and the base chain
    salt: str      # derived CREATE2 salt (hex), passed to the deployer


def _fixed_bytes(value: str, size: int, name: str) -> bytes:
    if not value:
        raise ValueError(f"Missing {name}")
    try:
        raw = from_hex(value)
    except ValueError:
        raise ValueError(f"Malformed {name}: {value}")
    if len(raw) != size:
        raise ValueError(f"{name} must be {size} bytes, got {len(raw)}")
    return raw


def create2_address(creator: str, salt: bytes, code_hash: bytes) -> str:
    """Base-chain CREATE2 address for (creator, salt, code_hash)."""
    creator_raw = _fixed_bytes(creator, 20, "creator address")
    digest = bytes(Web3.keccak(b"\xff" + creator_raw + salt + code_hash))
    return Web3.to_checksum_address(to_hex(digest[12:]))


def derive_salt(salt_arg: str, pubkey_hash: bytes) -> bytes:
    """CREATE2 salt binding the user salt to the escrow's signing key."""
    salt_raw = _fixed_bytes(salt_arg, 32, "salt")
    if len(pubkey_hash) != 20:
        raise ValueError(f"Public key hash must be 20 bytes, got {len(pubkey_hash)}")
    return bytes(Web3.keccak(salt_raw + pubkey_hash))


def derive_escrow_account(pubkey_hash: bytes, recovery: RecoveryParams) -> EscrowAccount:
    """
    Derive the escrow account for an aggregate public-key hash.

    Args:
        pubkey_hash: 20-byte hash of the joint signer's aggregate public key
        recovery: deployer address, salt argument and rescue code hash

    Returns:
        EscrowAccount with checksummed address and derived salt
    """
    if recovery is None:
        raise ValueError("Missing recovery parameters")
    code_hash = _fixed_bytes(recovery.code_hash, 32, "code hash")
    salt = derive_salt(recovery.salt, pubkey_hash)
    address = create2_address(recovery.creator, salt, code_hash)
    return EscrowAccount(address=address, salt=to_hex(salt))


def base_chain_address(account: EscrowAccount, recovery: RecoveryParams) -> str:
    """Address the deployer produces on the base chain for this escrow's salt."""
    code_hash = _fixed_bytes(recovery.code_hash, 32, "code hash")
    salt = _fixed_bytes(account.salt, 32, "salt")
    return create2_address(recovery.creator, salt, code_hash)


def rescue_constructor_args(
    client: str,
    provider: str,
    sell_token_address: str,
    buy_token_address: str,
    timeout: int,
    main_contract: str,
) -> list:
    """Constructor arguments of the rescue contract, in deployer order."""
    return [
        Web3.to_checksum_address(client),
        Web3.to_checksum_address(provider),
        Web3.to_checksum_address(sell_token_address),
        Web3.to_checksum_address(buy_token_address),
        int(timeout),
        Web3.to_checksum_address(main_contract),
    ]


def rescue_code_hash(bytecode: str, args: Sequence) -> str:
    """keccak256 of the rescue contract init code (bytecode + encoded args)."""
    if not bytecode:
        raise ValueError("Missing rescue contract bytecode")
    init_code = from_hex(bytecode) + encode(RESCUE_CONSTRUCTOR_TYPES, list(args))
    return to_hex(bytes(Web3.keccak(init_code)))


def recovery_params(creator: str, salt: str, bytecode: str, args: Sequence) -> RecoveryParams:
    """Build RecoveryParams for a swap from the deployer and rescue contract."""
    return RecoveryParams(
        creator=Web3.to_checksum_address(creator),
        salt=salt,
        code_hash=rescue_code_hash(bytecode, args),
    )
