"""
Address format checks for Solana and EVM networks
"""

import re

import base58

from x402_gateway.config import Network, NetworkConfig

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_valid_evm_address(address: str) -> bool:
    """0x followed by 40 hex characters"""
    return isinstance(address, str) and bool(_EVM_ADDRESS_RE.match(address))


def is_valid_solana_address(address: str) -> bool:
    """Base58 string that decodes to a 32-byte public key"""
    if not isinstance(address, str) or not _BASE58_RE.match(address):
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


def is_valid_address(address: str, network: Network) -> bool:
    """Check *address* has the right format for *network*"""
    if NetworkConfig.is_evm(network):
        return is_valid_evm_address(address)
    return is_valid_solana_address(address)

