"""
Token registry and amount conversion
"""

from x402_gateway.tokens.amounts import (
    parse_usd_price,
    price_to_smallest_unit,
    smallest_unit_to_usd,
    usd_to_smallest_unit,
)
from x402_gateway.tokens.registry import TokenInfo, TokenRegistry

__all__ = [
    "TokenInfo",
    "TokenRegistry",
    "parse_usd_price",
    "price_to_smallest_unit",
    "smallest_unit_to_usd",
    "usd_to_smallest_unit",
]
