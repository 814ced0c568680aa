"""
x402 Gateway Network Configuration
Centralized configuration for network identifiers, chain IDs and RPC endpoints
"""

from enum import Enum
from typing import Dict

from x402_gateway.exceptions import UnsupportedNetworkError


class Network(str, Enum):
    """Logical payment network"""

    SOLANA = "SOLANA"
    BASE = "BASE"
    POLYGON = "POLYGON"


class NetworkConfig:
    """Network configuration for protocol names, chain IDs and RPC endpoints"""

    DEFAULT_NETWORK = Network.SOLANA
    DEFAULT_EVM_NETWORK = Network.BASE

    # Network names as they appear in x402 "accepts" entries
    X402_NAMES: Dict[Network, str] = {
        Network.SOLANA: "solana",
        Network.BASE: "base",
        Network.POLYGON: "polygon",
    }

    # EVM chain IDs
    CHAIN_IDS: Dict[Network, int] = {
        Network.BASE: 8453,
        Network.POLYGON: 137,
    }

    # Default public RPC endpoints
    RPC_URLS: Dict[Network, str] = {
        Network.SOLANA: "https://api.mainnet-beta.solana.com",
        Network.BASE: "https://mainnet.base.org",
        Network.POLYGON: "https://polygon-rpc.com",
    }

    @classmethod
    def is_evm(cls, network: Network) -> bool:
        """Return True if *network* settles through EVM typed-data authorizations"""
        return network in cls.CHAIN_IDS

    @classmethod
    def get_x402_name(cls, network: Network) -> str:
        return cls.X402_NAMES[network]

    @classmethod
    def get_rpc_url(cls, network: Network) -> str:
        return cls.RPC_URLS[network]

    @classmethod
    def get_chain_id(cls, network: Network) -> int:
        """Get chain ID for an EVM network

        Raises:
            UnsupportedNetworkError: If network has no chain ID
        """
        chain_id = cls.CHAIN_IDS.get(network)
        if chain_id is None:
            raise UnsupportedNetworkError(f"Network {network.value} has no EVM chain ID")
        return chain_id

    @classmethod
    def from_chain_id(cls, chain_id: int | str | None) -> Network | None:
        """Map an EVM chain ID to a network, or None if unknown"""
        if chain_id is None:
            return None
        try:
            chain_id = int(chain_id)
        except (TypeError, ValueError):
            return None
        for network, known in cls.CHAIN_IDS.items():
            if known == chain_id:
                return network
        return None

    @classmethod
    def parse(cls, identifier: "str | Network") -> Network:
        """Parse a network identifier

        Accepts enum names ("BASE"), x402 names ("base") and CAIP-2 ids
        ("eip155:8453", "solana:<genesis>").

        Raises:
            UnsupportedNetworkError: If identifier is not recognized
        """
        if isinstance(identifier, Network):
            return identifier
        value = str(identifier).strip()
        upper = value.upper()
        if upper in Network.__members__:
            return Network[upper]
        lower = value.lower()
        for network, name in cls.X402_NAMES.items():
            if name == lower:
                return network
        if lower.startswith("eip155:"):
            network = cls.from_chain_id(lower.split(":", 1)[1])
            if network is not None:
                return network
        if lower.startswith("solana:"):
            return Network.SOLANA
        raise UnsupportedNetworkError(f"Unsupported network: {identifier}")
