"""
USD price to smallest-unit amount conversion.

All arithmetic is done on ``Decimal`` and conversion to smallest units always
rounds up, so a payer is never under-charged by truncation.
"""

from decimal import ROUND_CEILING, Decimal, InvalidOperation, localcontext

# Enough digits for uint256 amounts at 18 decimals
_PRECISION = 96


def parse_usd_price(price: str) -> Decimal:
    """Parse a human price string such as ``"$0.10"``.

    Raises:
        ValueError: If the price is malformed or not positive
    """
    cleaned = price.strip().replace("$", "").replace(",", "").strip()
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Invalid price format: {price}")
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"Invalid price format: {price}")
    return amount


def usd_to_smallest_unit(usd: Decimal, unit_price_usd: Decimal, decimals: int) -> int:
    """Convert a USD amount into the asset's smallest unit, rounding up"""
    if unit_price_usd <= 0:
        raise ValueError(f"Token price must be positive, got {unit_price_usd}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        units = usd / unit_price_usd * (Decimal(10) ** decimals)
        return int(units.to_integral_value(rounding=ROUND_CEILING))


def smallest_unit_to_usd(amount: int, unit_price_usd: Decimal, decimals: int) -> Decimal:
    """Convert a smallest-unit amount back into USD"""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(amount) / (Decimal(10) ** decimals) * unit_price_usd


def price_to_smallest_unit(price: str, unit_price_usd: Decimal, decimals: int) -> int:
    """Convert a price string like ``"$0.10"`` into smallest units"""
    return usd_to_smallest_unit(parse_usd_price(price), unit_price_usd, decimals)
