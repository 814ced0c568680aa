"""
FastAPI integration for x402 gateway
"""

from x402_gateway.fastapi.middleware import (
    PAYMENT_HEADER,
    PAYMENT_ID_HEADER,
    PAYMENT_PROOF_HEADER,
    PAYMENT_RESPONSE_HEADER,
    X402Middleware,
    apply_payment_protection,
    x402_protected,
)

__all__ = [
    "PAYMENT_HEADER",
    "PAYMENT_ID_HEADER",
    "PAYMENT_PROOF_HEADER",
    "PAYMENT_RESPONSE_HEADER",
    "X402Middleware",
    "apply_payment_protection",
    "x402_protected",
]
