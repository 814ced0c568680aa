"""
x402 gateway server: payment-required responses and proof dispatch
"""

from x402_gateway.server.schema import (
    create_accepts,
    create_x402_response,
    validate_accepts,
    validate_x402_response,
)
from x402_gateway.server.x402_server import X402Server

__all__ = [
    "X402Server",
    "create_accepts",
    "create_x402_response",
    "validate_accepts",
    "validate_x402_response",
]
