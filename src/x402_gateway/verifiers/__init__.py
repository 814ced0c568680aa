"""
Payment verifiers
"""

from x402_gateway.verifiers.base import BasePaymentVerifier, VerificationContext
from x402_gateway.verifiers.evm import TypedDataAuthorizationVerifier
from x402_gateway.verifiers.facilitator import FacilitatorVerifier
from x402_gateway.verifiers.solana import SolanaTransactionVerifier

__all__ = [
    "BasePaymentVerifier",
    "FacilitatorVerifier",
    "SolanaTransactionVerifier",
    "TypedDataAuthorizationVerifier",
    "VerificationContext",
]
