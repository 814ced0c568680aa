"""
Gateway runtime settings loaded from the environment
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping

from dotenv import load_dotenv

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.exceptions import ConfigurationError
from x402_gateway.tokens import TokenInfo, usd_to_smallest_unit

logger = logging.getLogger(__name__)

# Payout address variables, first match wins
PAYOUT_ENV_VARS: dict[Network, tuple[str, ...]] = {
    Network.SOLANA: ("SOLANA_PUBLIC_KEY", "PAYMENT_WALLET_SOLANA"),
    Network.BASE: ("BASE_PUBLIC_KEY", "PAYMENT_WALLET_BASE"),
    Network.POLYGON: ("POLYGON_PUBLIC_KEY", "PAYMENT_WALLET_POLYGON"),
}

TOKEN_PRICE_ENV_VARS: dict[str, tuple[str, str]] = {
    "ai16z": ("AI16Z_PRICE_USD", "0.50"),
    "degenai": ("DEGENAI_PRICE_USD", "0.01"),
}

DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_FACILITATOR_TIMEOUT = 10.0


def _env_flag(env: Mapping[str, str], name: str) -> bool:
    return env.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def _env_str(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name, "").strip()
        if value:
            return value
    return None


@dataclass
class GatewaySettings:
    """Operator configuration for the payment gateway.

    Testing escape hatches (``skip_signature_verification`` and
    ``allow_signer_mismatch``) default to disabled and are logged whenever set.
    """

    payout_addresses: dict[Network, str] = field(default_factory=dict)
    rpc_urls: dict[Network, str] = field(default_factory=dict)
    settlement_keys: dict[Network, str] = field(default_factory=dict)
    facilitator_url: str | None = None
    facilitator_api_key: str | None = None
    facilitator_timeout: float = DEFAULT_FACILITATOR_TIMEOUT
    trusted_gateway_signers: frozenset[str] = frozenset()
    skip_signature_verification: bool = False
    allow_signer_mismatch: bool = False
    debug_payments: bool = False
    base_url: str = DEFAULT_BASE_URL
    default_network: Network = NetworkConfig.DEFAULT_NETWORK
    default_evm_network: Network = NetworkConfig.DEFAULT_EVM_NETWORK
    token_prices_usd: dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self.trusted_gateway_signers = frozenset(
            s.strip().lower() for s in self.trusted_gateway_signers if s.strip()
        )
        if not NetworkConfig.is_evm(self.default_evm_network):
            raise ConfigurationError(
                f"Default EVM network must be an EVM network, got {self.default_evm_network.value}"
            )
        if self.skip_signature_verification:
            logger.warning(
                "SKIP_X402_SIGNATURE_VERIFICATION is enabled - typed-data signatures are NOT "
                "checked. Testing only."
            )
        if self.allow_signer_mismatch:
            logger.warning(
                "ALLOW_X402_SIGNER_MISMATCH is enabled - any signer may authorize for any "
                "payer. Testing only."
            )

    @classmethod
    def from_env(
        cls, env: Mapping[str, str] | None = None, load_env_file: bool = True
    ) -> "GatewaySettings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ`` (tests)
            load_env_file: Load a ``.env`` file first via python-dotenv
        """
        if env is None:
            if load_env_file:
                load_dotenv()
            env = os.environ

        payout_addresses = {}
        for network, names in PAYOUT_ENV_VARS.items():
            address = _env_str(env, *names)
            if address:
                payout_addresses[network] = address

        rpc_urls = {}
        settlement_keys = {}
        for network in Network:
            rpc = _env_str(env, f"{network.value}_RPC_URL")
            if rpc:
                rpc_urls[network] = rpc
            if NetworkConfig.is_evm(network):
                key = _env_str(env, f"{network.value}_PRIVATE_KEY")
                if key:
                    settlement_keys[network] = key

        token_prices: dict[str, Decimal] = {}
        for symbol, (name, default) in TOKEN_PRICE_ENV_VARS.items():
            raw = _env_str(env, name) or default
            try:
                token_prices[symbol] = Decimal(raw)
            except InvalidOperation:
                raise ConfigurationError(f"{name} must be a decimal number, got {raw!r}")

        trusted = _env_str(env, "X402_TRUSTED_GATEWAY_SIGNERS") or ""

        timeout_raw = _env_str(env, "X402_FACILITATOR_TIMEOUT")
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_FACILITATOR_TIMEOUT
        except ValueError:
            raise ConfigurationError(f"X402_FACILITATOR_TIMEOUT must be a number, got {timeout_raw!r}")

        default_network_raw = _env_str(env, "X402_DEFAULT_NETWORK")
        default_network = (
            NetworkConfig.parse(default_network_raw)
            if default_network_raw
            else NetworkConfig.DEFAULT_NETWORK
        )

        return cls(
            payout_addresses=payout_addresses,
            rpc_urls=rpc_urls,
            settlement_keys=settlement_keys,
            facilitator_url=_env_str(env, "X402_FACILITATOR_URL"),
            facilitator_api_key=_env_str(env, "X402_FACILITATOR_API_KEY"),
            facilitator_timeout=timeout,
            trusted_gateway_signers=frozenset(trusted.split(",")),
            skip_signature_verification=_env_flag(env, "SKIP_X402_SIGNATURE_VERIFICATION"),
            allow_signer_mismatch=_env_flag(env, "ALLOW_X402_SIGNER_MISMATCH"),
            debug_payments=_env_flag(env, "DEBUG_X402_PAYMENTS"),
            base_url=_env_str(env, "X402_BASE_URL") or DEFAULT_BASE_URL,
            default_network=default_network,
            token_prices_usd=token_prices,
        )

    def get_payout_address(self, network: Network) -> str:
        """Get the payout address for *network*

        Raises:
            ConfigurationError: If no payout address is configured
        """
        address = self.payout_addresses.get(network)
        if not address:
            names = " or ".join(PAYOUT_ENV_VARS[network])
            raise ConfigurationError(
                f"No payment address configured for network {network.value}. Set {names}."
            )
        return address

    def get_rpc_url(self, network: Network) -> str:
        return self.rpc_urls.get(network) or NetworkConfig.get_rpc_url(network)

    def get_token_price(self, token: TokenInfo) -> Decimal:
        """USD price of one whole *token*, configured price first"""
        return self.token_prices_usd.get(token.symbol.lower(), token.price_usd)

    def required_amount(self, price_usd: Decimal, token: TokenInfo) -> int:
        """Smallest-unit amount of *token* covering *price_usd*, rounded up"""
        return usd_to_smallest_unit(price_usd, self.get_token_price(token), token.decimals)

    def to_resource_url(self, path: str) -> str:
        """Convert a route path to an absolute resource URL"""
        clean_path = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url}{clean_path}"
