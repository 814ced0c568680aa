"""
EVM chain access - authorization state reads and transfer settlement via web3.py
"""

import json
import logging
from typing import Any

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware

from x402_gateway.exceptions import ConfigurationError, TransactionError
from x402_gateway.signers.base import AuthorizationStateReader, SettlementSigner
from x402_gateway.utils.eip712 import AUTHORIZATION_STATE_ABI

logger = logging.getLogger(__name__)


def create_async_web3(rpc_url: str) -> AsyncWeb3:
    """Create an async web3 client with POA extra-data handling (Base, Polygon)"""
    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


class EvmAuthorizationStateReader(AuthorizationStateReader):
    """Reads ``authorizationState`` from an ERC-3009 token contract"""

    def __init__(self, rpc_url: str) -> None:
        self._rpc_url = rpc_url
        self._w3: AsyncWeb3 | None = None

    def _ensure_async_web3_client(self) -> AsyncWeb3:
        """Lazy initialize async web3 client."""
        if self._w3 is None:
            self._w3 = create_async_web3(self._rpc_url)
        return self._w3

    async def authorization_state(
        self,
        token_address: str,
        authorizer: str,
        nonce: bytes,
    ) -> bool:
        w3 = self._ensure_async_web3_client()
        try:
            contract = w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(token_address),
                abi=AUTHORIZATION_STATE_ABI,
            )
            used = await contract.functions.authorizationState(
                AsyncWeb3.to_checksum_address(authorizer), nonce
            ).call()
        except Exception as e:
            raise TransactionError(f"authorizationState call failed: {e}") from e
        return bool(used)


class EvmSettlementSigner(SettlementSigner):
    """EVM settlement signer implementation using web3.py"""

    def __init__(self, private_key: str, rpc_url: str) -> None:
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        self._private_key = private_key
        try:
            self._address = Account.from_key(private_key).address
        except ValueError as e:
            raise ConfigurationError(f"Invalid settlement private key: {e}") from e
        self._rpc_url = rpc_url
        self._w3: AsyncWeb3 | None = None
        logger.debug("EvmSettlementSigner initialized", extra={"address": self._address})

    @classmethod
    def from_private_key(cls, private_key: str, rpc_url: str) -> "EvmSettlementSigner":
        """Create signer from private key

        Raises:
            ConfigurationError: If the key is not a valid secp256k1 private key
        """
        return cls(private_key, rpc_url)

    def get_address(self) -> str:
        return self._address

    def _ensure_async_web3_client(self) -> AsyncWeb3:
        """Lazy initialize async web3 client."""
        if self._w3 is None:
            self._w3 = create_async_web3(self._rpc_url)
        return self._w3

    async def write_contract(
        self,
        contract_address: str,
        abi: Any,
        method: str,
        args: list[Any],
    ) -> str | None:
        """Execute contract transaction on EVM (async)."""
        w3 = self._ensure_async_web3_client()

        try:
            abi_list = json.loads(abi) if isinstance(abi, str) else abi
            contract = w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(contract_address), abi=abi_list
            )
            func = getattr(contract.functions, method)

            tx = await func(*args).build_transaction(
                {
                    "from": self._address,
                    "nonce": await w3.eth.get_transaction_count(self._address),
                    "chainId": await w3.eth.chain_id,
                }
            )

            signed_tx = w3.eth.account.sign_transaction(tx, private_key=self._private_key)
            tx_hash = await w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            return "0x" + bytes(tx_hash).hex().removeprefix("0x")
        except Exception as e:
            logger.error(
                "Contract write failed: %s",
                e,
                exc_info=True,
                extra={"method": method, "contract": contract_address},
            )
            return None

    async def wait_for_transaction_receipt(
        self,
        tx_hash: str,
        timeout: int = 120,
    ) -> dict[str, Any]:
        """Wait for EVM transaction confirmation"""
        w3 = self._ensure_async_web3_client()
        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        return {
            "hash": tx_hash,
            "blockNumber": str(receipt["blockNumber"]),
            "status": "confirmed" if receipt["status"] == 1 else "failed",
            "receipt": receipt,
        }
