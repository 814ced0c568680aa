"""
EIP-712 / ERC-3009 typed data helpers
"""

import logging
from typing import Any, List

from eth_account import Account
from eth_account.messages import encode_typed_data

from x402_gateway.encoding import hex_to_bytes
from x402_gateway.exceptions import SignatureVerificationError
from x402_gateway.types import TransferAuthorization

logger = logging.getLogger(__name__)

TRANSFER_AUTH_PRIMARY_TYPE = "TransferWithAuthorization"
RECEIVE_AUTH_PRIMARY_TYPE = "ReceiveWithAuthorization"

_AUTHORIZATION_FIELDS = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

AUTHORIZATION_TYPES: dict[str, list[dict[str, str]]] = {
    TRANSFER_AUTH_PRIMARY_TYPE: _AUTHORIZATION_FIELDS,
    RECEIVE_AUTH_PRIMARY_TYPE: _AUTHORIZATION_FIELDS,
}

# Canonical EIP-712 domain field order and types
_EIP712_DOMAIN_FIELDS: list[tuple[str, str]] = [
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
    ("salt", "bytes32"),
]


# ---------------------------------------------------------------------------
# ABI for transferWithAuthorization (v, r, s variant) and authorizationState
# ---------------------------------------------------------------------------

TRANSFER_WITH_AUTHORIZATION_ABI: List[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "validAfter", "type": "uint256"},
            {"name": "validBefore", "type": "uint256"},
            {"name": "nonce", "type": "bytes32"},
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

AUTHORIZATION_STATE_ABI: List[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "authorizer", "type": "address"},
            {"name": "nonce", "type": "bytes32"},
        ],
        "name": "authorizationState",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def eip712_domain_type_from_keys(domain: dict[str, Any]) -> list[dict[str, str]]:
    """Build an EIP712Domain type array from the keys present in *domain*.

    Preserves the canonical field order defined in EIP-712.
    """
    return [{"name": name, "type": typ} for name, typ in _EIP712_DOMAIN_FIELDS if name in domain]


def build_eip712_domain(
    token_name: str,
    token_version: str,
    chain_id: int,
    verifying_contract: str,
) -> dict[str, Any]:
    """Build EIP-712 domain dict for a token contract"""
    return {
        "name": token_name,
        "version": token_version,
        "chainId": chain_id,
        "verifyingContract": verifying_contract,
    }


def build_eip712_message(auth: TransferAuthorization) -> dict[str, Any]:
    """Build EIP-712 message dict from authorization"""
    return {
        "from": auth.from_address,
        "to": auth.to,
        "value": int(auth.value),
        "validAfter": int(auth.valid_after),
        "validBefore": int(auth.valid_before),
        "nonce": hex_to_bytes(auth.nonce),
    }


def build_typed_data(
    domain: dict[str, Any],
    message: dict[str, Any],
    primary_type: str = TRANSFER_AUTH_PRIMARY_TYPE,
) -> dict[str, Any]:
    """Assemble a full EIP-712 typed data document"""
    return {
        "types": {
            "EIP712Domain": eip712_domain_type_from_keys(domain),
            primary_type: AUTHORIZATION_TYPES[primary_type],
        },
        "primaryType": primary_type,
        "domain": domain,
        "message": message,
    }


def split_signature(signature: str) -> tuple[int, bytes, bytes]:
    """Split a 65-byte signature into (v, r, s)

    Raises:
        SignatureVerificationError: If the signature is not 65 bytes
    """
    try:
        sig_bytes = hex_to_bytes(signature)
    except ValueError as e:
        raise SignatureVerificationError(f"Signature is not hex: {e}") from e
    if len(sig_bytes) != 65:
        raise SignatureVerificationError(
            f"Signature must be 65 bytes, got {len(sig_bytes)}"
        )
    r = sig_bytes[:32]
    s = sig_bytes[32:64]
    v = sig_bytes[64]
    if v < 27:
        v += 27
    return v, r, s


def join_signature(v: int | str, r: str, s: str) -> str:
    """Join (v, r, s) components into a 0x-prefixed 65-byte signature"""
    v_int = int(v, 0) if isinstance(v, str) else int(v)
    r_bytes = hex_to_bytes(r).rjust(32, b"\x00")
    s_bytes = hex_to_bytes(s).rjust(32, b"\x00")
    return "0x" + (r_bytes + s_bytes + bytes([v_int])).hex()


def recover_typed_data_signer(
    domain: dict[str, Any],
    message: dict[str, Any],
    signature: str,
    primary_type: str = TRANSFER_AUTH_PRIMARY_TYPE,
) -> str:
    """Recover the address that signed *message* under *domain*

    Raises:
        SignatureVerificationError: If the signature cannot be recovered
    """
    typed_data = build_typed_data(domain, message, primary_type)
    try:
        signable = encode_typed_data(full_message=typed_data)
        return Account.recover_message(signable, signature=hex_to_bytes(signature))
    except Exception as e:
        raise SignatureVerificationError(f"Signature recovery failed: {e}") from e


def domain_variants(
    chain_id: int, verifying_contract: str, declared: dict[str, Any] | None = None
) -> list[dict[str, Any]]:
    """Alternative domains a misconfigured client may have signed with.

    Used for diagnostics only; a match never authorizes a payment.
    """
    seen: list[dict[str, Any]] = []
    candidates = [
        build_eip712_domain("USD Coin", "2", chain_id, verifying_contract),
        build_eip712_domain("USDC", "2", chain_id, verifying_contract),
        build_eip712_domain("USD Coin", "1", chain_id, verifying_contract),
        build_eip712_domain("USDC", "1", chain_id, verifying_contract),
    ]
    for candidate in candidates:
        if declared and candidate == declared:
            continue
        if candidate not in seen:
            seen.append(candidate)
    return seen
