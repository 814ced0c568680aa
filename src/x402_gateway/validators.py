"""
Reusable pre-payment request validators.

Validators run before any payment check so a caller is never asked to pay for
a request that would fail anyway. Each one takes the FastAPI ``Request`` and
returns a ``ValidationResult``.
"""

import inspect
import json
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Literal

from fastapi import Request

from x402_gateway.types import ValidationResult
from x402_gateway.utils.address import is_valid_evm_address, is_valid_solana_address

AsyncValidator = Callable[[Request], Awaitable[ValidationResult]]


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def is_positive_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return False
    return number.is_finite() and number > 0


def missing_fields(data: dict[str, Any], required: list[str]) -> list[str]:
    return [name for name in required if _is_blank(data.get(name))]


def require_body_fields(*fields: str) -> AsyncValidator:
    """Validator requiring non-empty JSON body fields"""

    async def validator(request: Request) -> ValidationResult:
        missing = missing_fields(await _json_body(request), list(fields))
        if missing:
            return ValidationResult.fail(
                f"Missing required fields: {', '.join(missing)}", details={"missing": missing}
            )
        return ValidationResult.ok()

    return validator


def require_query_params(*params: str) -> AsyncValidator:
    """Validator requiring non-empty query parameters"""

    async def validator(request: Request) -> ValidationResult:
        missing = missing_fields(dict(request.query_params), list(params))
        if missing:
            return ValidationResult.fail(
                f"Missing required query parameters: {', '.join(missing)}",
                details={"missing": missing},
            )
        return ValidationResult.ok()

    return validator


def token_mint_validator() -> AsyncValidator:
    """Validator for token endpoints: ``tokenMint`` must be a Solana address"""

    async def validator(request: Request) -> ValidationResult:
        token_mint = (await _json_body(request)).get("tokenMint")
        if not token_mint:
            return ValidationResult.fail("tokenMint is required")
        if not is_valid_solana_address(token_mint):
            return ValidationResult.fail(
                "tokenMint must be a valid Solana address", details={"tokenMint": token_mint}
            )
        return ValidationResult.ok()

    return validator


def swap_quote_validator() -> AsyncValidator:
    """Validator for swap quotes: ``inputMint``, ``outputMint`` and a positive ``amount``"""

    async def validator(request: Request) -> ValidationResult:
        body = await _json_body(request)
        missing = [name for name in ("inputMint", "outputMint", "amount") if not body.get(name)]
        if missing:
            return ValidationResult.fail(
                f"Missing required fields: {', '.join(missing)}", details={"missing": missing}
            )
        for name in ("inputMint", "outputMint"):
            if not is_valid_solana_address(body[name]):
                return ValidationResult.fail(
                    f"{name} must be a valid Solana address", details={name: body[name]}
                )
        if not is_positive_number(body["amount"]):
            return ValidationResult.fail(
                "amount must be a positive number", details={"amount": body["amount"]}
            )
        return ValidationResult.ok()

    return validator


def wallet_validator(network: Literal["solana", "evm"] = "solana") -> AsyncValidator:
    """Validator for wallet endpoints: ``wallet`` query parameter must be an address"""
    label = "Solana" if network == "solana" else "EVM"
    check = is_valid_solana_address if network == "solana" else is_valid_evm_address

    async def validator(request: Request) -> ValidationResult:
        wallet = request.query_params.get("wallet")
        if not wallet:
            return ValidationResult.fail("wallet address is required")
        if not check(wallet):
            return ValidationResult.fail(
                f"wallet must be a valid {label} address", details={"wallet": wallet}
            )
        return ValidationResult.ok()

    return validator


def compose_validators(*validators: Callable[[Request], Any]) -> AsyncValidator:
    """Run validators in order; the first failure wins"""

    async def validator(request: Request) -> ValidationResult:
        for child in validators:
            result = child(request)
            if inspect.isawaitable(result):
                result = await result
            if not result.valid:
                return result
        return ValidationResult.ok()

    return validator
