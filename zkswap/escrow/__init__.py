"""
Escrow account addressing and the base-chain rescue path.
"""

from .create2 import EscrowAccount, derive_escrow_account, recovery_params, rescue_constructor_args
from .rescue import EscrowRescuer, RescueResult, session_rescue_inputs

__all__ = [
    "EscrowAccount",
    "derive_escrow_account",
    "recovery_params",
    "rescue_constructor_args",
    "EscrowRescuer",
    "RescueResult",
    "session_rescue_inputs",
]
