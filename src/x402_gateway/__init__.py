"""
x402-gateway - HTTP 402 payment gateway for FastAPI

Verifies Solana transactions, ERC-3009 typed-data authorizations on EVM
networks and facilitator payment ids before handing a request to a paid route.
"""

__version__ = "0.1.0"

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.exceptions import (
    ConfigurationError,
    ResponseValidationError,
    SignatureError,
    SignatureVerificationError,
    TransactionError,
    UnknownTokenError,
    UnsupportedNetworkError,
    ValidationError,
    X402Error,
)
from x402_gateway.proofs import decode_payment_proof
from x402_gateway.settings import GatewaySettings
from x402_gateway.tokens import TokenInfo, TokenRegistry
from x402_gateway.types import (
    AcceptsEntry,
    FacilitatorId,
    NativeChainSignature,
    RoutePaymentDescriptor,
    TransferAuthorization,
    TypedDataAuthorization,
    ValidationResult,
    VerificationOutcome,
    X402Response,
)

__all__ = [
    "__version__",
    # Config
    "GatewaySettings",
    "Network",
    "NetworkConfig",
    # Types
    "AcceptsEntry",
    "FacilitatorId",
    "NativeChainSignature",
    "RoutePaymentDescriptor",
    "TransferAuthorization",
    "TypedDataAuthorization",
    "ValidationResult",
    "VerificationOutcome",
    "X402Response",
    "decode_payment_proof",
    # Exceptions
    "X402Error",
    "ValidationError",
    "SignatureError",
    "SignatureVerificationError",
    "TransactionError",
    "ConfigurationError",
    "UnsupportedNetworkError",
    "UnknownTokenError",
    "ResponseValidationError",
    # Tokens
    "TokenInfo",
    "TokenRegistry",
]
