"""
Payment proof decoding.

Normalizes the raw value of the ``X-Payment-Proof`` / ``X-Payment`` header (or
``paymentProof`` query parameter) into a typed proof. Structured shapes win over
unstructured ones: base64 JSON, bare JSON, legacy ``network:address:signature``
and finally a bare native-chain transaction signature.
"""

import json
import logging
from typing import Any

import pydantic

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.encoding import decode_base64_text
from x402_gateway.exceptions import UnsupportedNetworkError
from x402_gateway.types import (
    NativeChainSignature,
    TransferAuthorization,
    TypedDataAuthorization,
    TypedDataDomain,
)
from x402_gateway.utils.eip712 import join_signature

logger = logging.getLogger(__name__)

# Shortest bare token accepted as a native-chain transaction signature
MIN_BARE_SIGNATURE_LENGTH = 51


def decode_payment_proof(
    raw: str | None,
    default_native_network: Network = Network.SOLANA,
    default_evm_network: Network = NetworkConfig.DEFAULT_EVM_NETWORK,
) -> NativeChainSignature | TypedDataAuthorization | None:
    """Decode a raw payment proof string.

    Args:
        raw: Header or query value as received
        default_native_network: Network for bare transaction signatures
        default_evm_network: Network for typed data that does not name one

    Returns:
        The decoded proof, or None if the value is not recognized
    """
    if not raw or not raw.strip():
        return None
    raw = raw.strip()
    text = decode_base64_text(raw) or raw

    try:
        data = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, dict):
        proof = _decode_json_proof(data, default_evm_network)
        if proof is None:
            logger.debug("JSON payment proof has no signature/authorization pair")
        return proof

    parts = text.split(":")
    if len(parts) >= 3:
        return _decode_legacy_proof(parts)

    if len(parts) == 1 and len(text) >= MIN_BARE_SIGNATURE_LENGTH and not any(
        ch.isspace() for ch in text
    ):
        return NativeChainSignature(signature=text, network=default_native_network)

    return None


def _decode_json_proof(
    data: dict[str, Any], default_evm_network: Network
) -> TypedDataAuthorization | None:
    # Gateway-wrapped shape: {network, scheme, payload: {signature, authorization}}
    payload = data.get("payload")
    body = payload if isinstance(payload, dict) else data

    signature = _extract_signature(body)
    authorization_data = body.get("authorization") or body.get("message")
    if signature is None or not isinstance(authorization_data, dict):
        return None

    domain_data = body.get("domain") or data.get("domain")
    domain = None
    if isinstance(domain_data, dict):
        try:
            domain = TypedDataDomain.model_validate(domain_data)
        except pydantic.ValidationError as e:
            logger.debug("Ignoring malformed EIP-712 domain: %s", e)

    authorization = None
    try:
        authorization = TransferAuthorization.model_validate(authorization_data)
    except pydantic.ValidationError as e:
        logger.debug("Malformed transfer authorization: %s", e)

    network = _resolve_typed_data_network(
        domain, body.get("network") or data.get("network"), default_evm_network
    )
    return TypedDataAuthorization(
        network=network,
        signature=signature,
        authorization=authorization,
        domain=domain,
    )


def _extract_signature(body: dict[str, Any]) -> str | None:
    signature = body.get("signature")
    try:
        if isinstance(signature, str) and signature:
            return signature
        if isinstance(signature, dict) and all(k in signature for k in ("v", "r", "s")):
            return join_signature(signature["v"], signature["r"], signature["s"])
        if all(body.get(k) is not None for k in ("v", "r", "s")):
            return join_signature(body["v"], body["r"], body["s"])
    except (TypeError, ValueError) as e:
        logger.debug("Malformed v/r/s signature: %s", e)
    return None


def _resolve_typed_data_network(
    domain: TypedDataDomain | None,
    explicit: Any,
    default_evm_network: Network,
) -> Network:
    """Chain id from the signed domain wins, then the explicit field, then the default"""
    if domain is not None:
        network = NetworkConfig.from_chain_id(domain.chain_id)
        if network is not None:
            return network
    if isinstance(explicit, str) and explicit:
        try:
            network = NetworkConfig.parse(explicit)
        except UnsupportedNetworkError:
            logger.debug("Unknown network %r in payment proof, using default", explicit)
        else:
            if NetworkConfig.is_evm(network):
                return network
    return default_evm_network


def _decode_legacy_proof(
    parts: list[str],
) -> NativeChainSignature | TypedDataAuthorization | None:
    network_token, address, signature = parts[0], parts[1], parts[2]
    try:
        network = NetworkConfig.parse(network_token)
    except UnsupportedNetworkError:
        logger.debug("Unknown network %r in legacy payment proof", network_token)
        return None
    if not signature:
        return None
    if NetworkConfig.is_evm(network):
        # Bare signature without authorization fields; verification fails fast
        return TypedDataAuthorization(network=network, signature=signature)
    return NativeChainSignature(signature=signature, network=network, claimed_address=address)
