"""
On-chain signers and readers
"""

from x402_gateway.signers.base import AuthorizationStateReader, SettlementSigner
from x402_gateway.signers.evm_signer import (
    EvmAuthorizationStateReader,
    EvmSettlementSigner,
    create_async_web3,
)

__all__ = [
    "AuthorizationStateReader",
    "EvmAuthorizationStateReader",
    "EvmSettlementSigner",
    "SettlementSigner",
    "create_async_web3",
]
