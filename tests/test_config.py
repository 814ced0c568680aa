"""
Tests for network configuration, token registry and settings
"""

import logging
from decimal import Decimal

import pytest

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.exceptions import ConfigurationError, UnknownTokenError, UnsupportedNetworkError
from x402_gateway.settings import GatewaySettings
from x402_gateway.tokens import TokenInfo, TokenRegistry


class TestNetworkConfig:
    @pytest.mark.parametrize(
        "identifier,expected",
        [
            ("BASE", Network.BASE),
            ("base", Network.BASE),
            ("eip155:8453", Network.BASE),
            ("polygon", Network.POLYGON),
            ("eip155:137", Network.POLYGON),
            ("SOLANA", Network.SOLANA),
            ("solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp", Network.SOLANA),
            (Network.POLYGON, Network.POLYGON),
        ],
    )
    def test_parse(self, identifier, expected):
        assert NetworkConfig.parse(identifier) is expected

    @pytest.mark.parametrize("identifier", ["ethereum", "eip155:1", "tron:nile", ""])
    def test_parse_unknown(self, identifier):
        with pytest.raises(UnsupportedNetworkError):
            NetworkConfig.parse(identifier)

    def test_chain_ids(self):
        assert NetworkConfig.get_chain_id(Network.BASE) == 8453
        assert NetworkConfig.from_chain_id("137") is Network.POLYGON
        assert NetworkConfig.from_chain_id(1) is None
        with pytest.raises(UnsupportedNetworkError):
            NetworkConfig.get_chain_id(Network.SOLANA)

    def test_is_evm(self):
        assert NetworkConfig.is_evm(Network.BASE)
        assert not NetworkConfig.is_evm(Network.SOLANA)


class TestTokenRegistry:
    def test_solana_tokens(self):
        symbols = [t.symbol for t in TokenRegistry.get_network_tokens(Network.SOLANA)]
        assert symbols == ["USDC", "ai16z", "degenai"]

    def test_find_by_address_is_case_insensitive_on_evm(self):
        usdc = TokenRegistry.get_default_token(Network.BASE)
        assert TokenRegistry.find_by_address(Network.BASE, usdc.address.lower()) is usdc

    def test_find_by_address_is_exact_on_solana(self):
        usdc = TokenRegistry.get_default_token(Network.SOLANA)
        assert TokenRegistry.find_by_address(Network.SOLANA, usdc.address) is usdc
        assert TokenRegistry.find_by_address(Network.SOLANA, usdc.address.lower()) is None

    def test_unknown_token(self):
        with pytest.raises(UnknownTokenError):
            TokenRegistry.get_token(Network.BASE, "DAI")

    def test_register_token(self):
        token = TokenInfo(
            address="0x2222222222222222222222222222222222222222",
            decimals=18,
            name="Test",
            symbol="TST",
        )
        TokenRegistry.register_token(Network.POLYGON, token)
        try:
            assert TokenRegistry.get_token(Network.POLYGON, "tst") is token
        finally:
            TokenRegistry._tokens[Network.POLYGON].pop("TST", None)


class TestGatewaySettings:
    def test_from_env(self):
        settings = GatewaySettings.from_env(
            env={
                "BASE_PUBLIC_KEY": "0x1111111111111111111111111111111111111111",
                "PAYMENT_WALLET_SOLANA": "So11111111111111111111111111111111111111112",
                "BASE_RPC_URL": "https://base.example.com",
                "BASE_PRIVATE_KEY": "0xabc",
                "X402_TRUSTED_GATEWAY_SIGNERS": "0xAAAA, 0xBbBb,",
                "X402_BASE_URL": "https://api.example.com/",
                "X402_FACILITATOR_TIMEOUT": "2.5",
                "AI16Z_PRICE_USD": "0.75",
            }
        )
        assert settings.get_payout_address(Network.BASE).startswith("0x1111")
        assert settings.get_payout_address(Network.SOLANA).startswith("So111")
        assert settings.get_rpc_url(Network.BASE) == "https://base.example.com"
        assert settings.get_rpc_url(Network.POLYGON) == NetworkConfig.get_rpc_url(Network.POLYGON)
        assert settings.settlement_keys == {Network.BASE: "0xabc"}
        assert settings.trusted_gateway_signers == frozenset({"0xaaaa", "0xbbbb"})
        assert settings.base_url == "https://api.example.com"
        assert settings.facilitator_timeout == 2.5
        assert settings.token_prices_usd["ai16z"] == Decimal("0.75")
        assert settings.token_prices_usd["degenai"] == Decimal("0.01")

    def test_escape_hatches_default_off(self):
        settings = GatewaySettings.from_env(env={})
        assert settings.skip_signature_verification is False
        assert settings.allow_signer_mismatch is False
        assert settings.facilitator_url is None
        assert settings.payout_addresses == {}

    def test_escape_hatches_are_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="x402_gateway.settings"):
            GatewaySettings.from_env(
                env={
                    "SKIP_X402_SIGNATURE_VERIFICATION": "true",
                    "ALLOW_X402_SIGNER_MISMATCH": "1",
                }
            )
        assert "SKIP_X402_SIGNATURE_VERIFICATION" in caplog.text
        assert "ALLOW_X402_SIGNER_MISMATCH" in caplog.text

    def test_missing_payout_address(self):
        settings = GatewaySettings()
        with pytest.raises(ConfigurationError, match="POLYGON_PUBLIC_KEY"):
            settings.get_payout_address(Network.POLYGON)

    def test_invalid_number(self):
        with pytest.raises(ConfigurationError):
            GatewaySettings.from_env(env={"DEGENAI_PRICE_USD": "cheap"})

    def test_resource_url(self, settings):
        assert settings.to_resource_url("api/x") == "https://api.example.com/api/x"
