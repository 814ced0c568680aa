"""
Structural validation of x402 "payment required" responses.

Checks are run against the JSON form of the response (camelCase keys), the
same shape an x402 client or index sees.
"""

from typing import Any
from urllib.parse import urlparse

from x402_gateway.exceptions import ResponseValidationError
from x402_gateway.types import (
    SCHEME_EXACT,
    AcceptsEntry,
    FieldDef,
    OutputSchema,
    OutputSchemaInput,
    X402Response,
)
from x402_gateway.utils.address import is_valid_evm_address, is_valid_solana_address

VALID_NETWORKS = [
    "base-sepolia",
    "base",
    "avalanche-fuji",
    "avalanche",
    "iotex",
    "solana-devnet",
    "solana",
    "sei",
    "sei-testnet",
    "polygon",
    "polygon-amoy",
    "peaq",
]

VALID_METHODS = ("GET", "POST")
VALID_BODY_TYPES = ("json", "form-data", "multipart-form-data", "text", "binary")

PAYMENT_HEADER_FIELDS: dict[str, FieldDef] = {
    "X-Payment-Proof": FieldDef(
        type="string",
        required=True,
        description="Payment proof token from x402 payment provider",
    ),
    "X-Payment-Id": FieldDef(
        type="string",
        required=False,
        description="Optional payment ID for tracking",
    ),
}


def _as_dict(value: Any) -> dict[str, Any]:
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True, exclude_none=True)
    return dict(value)


def _is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _is_valid_wallet_address(address: str, network: str) -> bool:
    if "solana" in network:
        return is_valid_solana_address(address)
    return is_valid_evm_address(address)


def _is_nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def validate_accepts(entry: AcceptsEntry | dict[str, Any]) -> list[str]:
    """Validate one accepts entry. Returns a list of errors, empty when valid"""
    data = _as_dict(entry)
    errors: list[str] = []

    if data.get("scheme") != SCHEME_EXACT:
        errors.append('scheme must be "exact"')

    network = data.get("network")
    if network not in VALID_NETWORKS:
        errors.append(f"network must be one of: {', '.join(VALID_NETWORKS)}")

    if not _is_nonempty_str(data.get("maxAmountRequired")):
        errors.append("maxAmountRequired is required and must be a string")

    resource = data.get("resource")
    if not _is_nonempty_str(resource):
        errors.append("resource is required and must be a string (full URL)")
    elif not _is_valid_url(resource):
        errors.append("resource must be a valid URL (must start with http:// or https://)")

    if not _is_nonempty_str(data.get("description")):
        errors.append("description is required and must be a string")

    if not _is_nonempty_str(data.get("mimeType")):
        errors.append('mimeType is required and must be a string (e.g., "application/json")')

    pay_to = data.get("payTo")
    if not _is_nonempty_str(pay_to):
        errors.append("payTo is required and must be a string (wallet address)")
    elif isinstance(network, str) and network and not _is_valid_wallet_address(pay_to, network):
        errors.append(f"payTo must be a valid wallet address for network {network}")

    timeout = data.get("maxTimeoutSeconds")
    if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0:
        errors.append("maxTimeoutSeconds is required and must be a positive number")

    if not _is_nonempty_str(data.get("asset")):
        errors.append('asset is required and must be a string (e.g., "USDC", "ETH")')

    schema = data.get("outputSchema")
    if schema:
        schema_input = schema.get("input") or {}
        if schema_input.get("type") != "http":
            errors.append('outputSchema.input.type must be "http"')
        if schema_input.get("method") not in VALID_METHODS:
            errors.append('outputSchema.input.method must be "GET" or "POST"')
        body_type = schema_input.get("bodyType")
        if body_type and body_type not in VALID_BODY_TYPES:
            errors.append(f"outputSchema.input.bodyType must be one of: {', '.join(VALID_BODY_TYPES)}")

    return errors


def validate_x402_response(response: X402Response | dict[str, Any]) -> list[str]:
    """Validate a whole 402 response. Returns a list of errors, empty when valid"""
    data = _as_dict(response)
    errors: list[str] = []

    version = data.get("x402Version")
    if isinstance(version, bool) or not isinstance(version, int):
        errors.append("x402Version is required and must be a number")

    accepts = data.get("accepts")
    if accepts is not None:
        if not isinstance(accepts, list):
            errors.append("accepts must be an array")
        else:
            for index, entry in enumerate(accepts):
                entry_errors = validate_accepts(entry)
                if entry_errors:
                    errors.append(f"accepts[{index}]: {', '.join(entry_errors)}")

    return errors


def create_accepts(
    network: str,
    max_amount_required: str,
    resource: str,
    description: str,
    pay_to: str,
    asset: str,
    mime_type: str = "application/json",
    max_timeout_seconds: int = 300,
    output_schema: OutputSchema | None = None,
    extra: dict[str, Any] | None = None,
) -> AcceptsEntry:
    """Create a validated accepts entry

    Raises:
        ResponseValidationError: If the entry is structurally invalid
    """
    entry = AcceptsEntry(
        network=network,
        maxAmountRequired=max_amount_required,
        resource=resource,
        description=description,
        mimeType=mime_type,
        payTo=pay_to,
        maxTimeoutSeconds=max_timeout_seconds,
        asset=asset,
        outputSchema=output_schema,
        extra=extra,
    )
    errors = validate_accepts(entry)
    if errors:
        raise ResponseValidationError(errors)
    return entry


def create_x402_response(
    accepts: list[AcceptsEntry] | None = None,
    error: str | None = None,
) -> X402Response:
    """Create a validated 402 response

    Raises:
        ResponseValidationError: If the response is structurally invalid
    """
    response = X402Response(accepts=accepts or [], error=error)
    errors = validate_x402_response(response)
    if errors:
        raise ResponseValidationError(errors)
    return response


def build_output_schema(
    method: str,
    query_params: dict[str, Any] | None = None,
    body_fields: dict[str, Any] | None = None,
) -> OutputSchema:
    """Describe how to call a paid endpoint"""
    http_method = "POST" if method.upper() == "POST" else "GET"
    is_post = http_method == "POST"
    return OutputSchema(
        input=OutputSchemaInput(
            method=http_method,
            bodyType="json" if is_post else None,
            queryParams=query_params if not is_post and query_params else None,
            bodyFields=body_fields if is_post and body_fields else None,
            headerFields=PAYMENT_HEADER_FIELDS,
        ),
        output={"type": "object", "description": "API response data (varies by endpoint)"},
    )
