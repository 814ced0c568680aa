"""
Solana transaction verifier.

Confirms that a finalized transaction exists, did not fail, and involves the
configured payout address. The transferred amount is NOT checked: attributing
a native transfer to a route needs indexing this verifier does not have.
"""

from typing import Any

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Finalized
from solders.signature import Signature

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.settings import GatewaySettings
from x402_gateway.types import NativeChainSignature, VerificationOutcome
from x402_gateway.verifiers.base import BasePaymentVerifier, VerificationContext


class SolanaTransactionVerifier(BasePaymentVerifier[NativeChainSignature]):
    """Verifies Solana payments by transaction signature"""

    def __init__(self, settings: GatewaySettings) -> None:
        super().__init__()
        self._settings = settings

    async def get_transaction_info(self, signature: str) -> dict[str, Any] | None:
        """Fetch a finalized transaction.

        Returns:
            ``{"err": ..., "account_keys": [base58, ...]}``, or None if not found

        Raises:
            ValueError: If *signature* is not a valid transaction signature
        """
        sig = Signature.from_string(signature)
        rpc_url = self._settings.get_rpc_url(Network.SOLANA)
        async with AsyncClient(rpc_url) as client:
            resp = await client.get_transaction(
                sig,
                encoding="json",
                commitment=Finalized,
                max_supported_transaction_version=0,
            )
        tx = resp.value
        if tx is None:
            return None

        meta = tx.transaction.meta
        message = tx.transaction.transaction.message
        keys = [str(getattr(k, "pubkey", k)) for k in message.account_keys]
        loaded = getattr(meta, "loaded_addresses", None) if meta is not None else None
        if loaded is not None:
            keys.extend(str(k) for k in loaded.writable)
            keys.extend(str(k) for k in loaded.readonly)
        return {
            "err": meta.err if meta is not None else None,
            "account_keys": keys,
            "slot": tx.slot,
        }

    async def verify(
        self, proof: NativeChainSignature, context: VerificationContext
    ) -> VerificationOutcome:
        network_name = NetworkConfig.get_x402_name(context.network)
        self._logger.info("Verifying Solana transaction: %s...", proof.signature[:20])

        if proof.claimed_address and proof.claimed_address != context.pay_to:
            self._logger.debug(
                "Ignoring recipient %s embedded in proof; expecting %s",
                proof.claimed_address,
                context.pay_to,
            )

        try:
            info = await self.get_transaction_info(proof.signature)
        except ValueError as e:
            self._logger.debug("Malformed transaction signature: %s", e)
            return self._reject("invalid_signature_format", network=network_name)
        except Exception as e:
            self._logger.error("Solana RPC lookup failed: %s", e)
            return self._reject("rpc_unavailable", network=network_name, transport_error=True)

        if info is None:
            return self._reject("transaction_not_found", network=network_name)

        if info.get("err"):
            self._logger.debug("Transaction failed on-chain: %s", info["err"])
            return self._reject("transaction_failed", network=network_name)

        if context.pay_to not in info.get("account_keys", []):
            return self._reject("recipient_not_found", network=network_name)

        self._logger.info("Solana transaction verified: %s", proof.signature)
        return VerificationOutcome(
            verified=True,
            settled=True,
            reason="transaction_confirmed",
            network=network_name,
            transaction=proof.signature,
        )
