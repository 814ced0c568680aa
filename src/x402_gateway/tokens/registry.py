"""
Token registry - Centralized management of payable assets for all networks
"""

from dataclasses import dataclass
from decimal import Decimal

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.exceptions import UnknownTokenError


@dataclass
class TokenInfo:
    """Token information.

    ``name`` and ``version`` are the EIP-712 domain fields of the token contract
    on EVM networks.
    """

    address: str
    decimals: int
    name: str
    symbol: str
    version: str = "1"
    price_usd: Decimal = Decimal("1")


class TokenRegistry:
    """Token registry"""

    _tokens: dict[Network, dict[str, TokenInfo]] = {
        Network.SOLANA: {
            "USDC": TokenInfo(
                address="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
                decimals=6,
                name="USD Coin",
                symbol="USDC",
            ),
            "AI16Z": TokenInfo(
                address="HeLp6NuQkmYB4pYWo2zYs22mESHXPQYzXbB8n4V98jwC",
                decimals=6,
                name="ai16z",
                symbol="ai16z",
                price_usd=Decimal("0.50"),
            ),
            "DEGENAI": TokenInfo(
                address="Gu3LDkn7Vx3bmCzLafYNKcDxv2mH7YN44NJZFXnypump",
                decimals=6,
                name="degenai",
                symbol="degenai",
                price_usd=Decimal("0.01"),
            ),
        },
        Network.BASE: {
            "USDC": TokenInfo(
                address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
                decimals=6,
                name="USD Coin",
                symbol="USDC",
                version="2",
            ),
        },
        Network.POLYGON: {
            "USDC": TokenInfo(
                address="0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
                decimals=6,
                name="USD Coin",
                symbol="USDC",
                version="2",
            ),
        },
    }

    @classmethod
    def register_token(cls, network: Network, token: TokenInfo) -> None:
        """Register a custom token for specified network"""
        if network not in cls._tokens:
            cls._tokens[network] = {}
        cls._tokens[network][token.symbol.upper()] = token

    @classmethod
    def get_token(cls, network: Network, symbol: str) -> TokenInfo:
        """Get token information for specified network and symbol

        Raises:
            UnknownTokenError: If token does not exist
        """
        tokens = cls._tokens.get(network, {})
        token = tokens.get(symbol.upper())
        if token is None:
            raise UnknownTokenError(f"Unknown token {symbol} on network {network.value}")
        return token

    @classmethod
    def find_by_address(cls, network: Network, address: str) -> TokenInfo | None:
        """Find token information by address"""
        tokens = cls._tokens.get(network, {})
        # EVM addresses compare case-insensitively, Solana mints are case-sensitive
        if NetworkConfig.is_evm(network):
            lower = address.lower()
            for info in tokens.values():
                if info.address.lower() == lower:
                    return info
            return None
        for info in tokens.values():
            if info.address == address:
                return info
        return None

    @classmethod
    def get_network_tokens(cls, network: Network) -> list[TokenInfo]:
        """Get all payable tokens for specified network"""
        return list(cls._tokens.get(network, {}).values())

    @classmethod
    def get_default_token(cls, network: Network) -> TokenInfo:
        """Get the token used when a proof does not name one (USDC)"""
        return cls.get_token(network, "USDC")
