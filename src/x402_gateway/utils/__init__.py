"""
Utility functions for x402 gateway
"""

from x402_gateway.utils.address import (
    is_valid_address,
    is_valid_evm_address,
    is_valid_solana_address,
)

__all__ = [
    "is_valid_address",
    "is_valid_evm_address",
    "is_valid_solana_address",
]
