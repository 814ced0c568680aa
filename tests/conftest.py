"""
Pytest configuration and test fixtures
"""

import time
from decimal import Decimal

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from x402_gateway.config import Network
from x402_gateway.settings import GatewaySettings
from x402_gateway.tokens import TokenRegistry
from x402_gateway.utils.eip712 import (
    TRANSFER_AUTH_PRIMARY_TYPE,
    build_eip712_domain,
    build_typed_data,
)

SOLANA_PAYEE = "So11111111111111111111111111111111111111112"
EVM_PAYEE = "0x1111111111111111111111111111111111111111"

PAYER_KEY = "0x" + "11" * 32
GATEWAY_KEY = "0x" + "22" * 32
OTHER_KEY = "0x" + "33" * 32

BASE_USDC = TokenRegistry.get_default_token(Network.BASE).address


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def payer():
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def gateway_signer():
    return Account.from_key(GATEWAY_KEY)


@pytest.fixture
def settings():
    return GatewaySettings(
        payout_addresses={
            Network.SOLANA: SOLANA_PAYEE,
            Network.BASE: EVM_PAYEE,
            Network.POLYGON: EVM_PAYEE,
        },
        base_url="https://api.example.com",
        facilitator_url="https://facilitator.example.com/api/facilitator",
        token_prices_usd={"ai16z": Decimal("0.50"), "degenai": Decimal("0.01")},
    )


def make_authorization(
    from_addr: str,
    to_addr: str = EVM_PAYEE,
    value: int = 100000,
    valid_after: int | None = None,
    valid_before: int | None = None,
    nonce: str | None = None,
) -> dict:
    now = int(time.time())
    return {
        "from": from_addr,
        "to": to_addr,
        "value": str(value),
        "validAfter": str(valid_after if valid_after is not None else now - 30),
        "validBefore": str(valid_before if valid_before is not None else now + 3600),
        "nonce": nonce or ("0x" + "cd" * 32),
    }


def sign_authorization(
    key: str,
    authorization: dict,
    chain_id: int = 8453,
    token_address: str = BASE_USDC,
    name: str = "USD Coin",
    version: str = "2",
    primary_type: str = TRANSFER_AUTH_PRIMARY_TYPE,
) -> str:
    domain = build_eip712_domain(name, version, chain_id, token_address)
    message = {
        "from": authorization["from"],
        "to": authorization["to"],
        "value": int(authorization["value"]),
        "validAfter": int(authorization["validAfter"]),
        "validBefore": int(authorization["validBefore"]),
        "nonce": bytes.fromhex(authorization["nonce"][2:]),
    }
    signable = encode_typed_data(full_message=build_typed_data(domain, message, primary_type))
    signed = Account.sign_message(signable, private_key=key)
    return "0x" + bytes(signed.signature).hex()
